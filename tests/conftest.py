"""
Shared fixtures: a fake rusunawa backend served through httpx.MockTransport.
"""

from datetime import date

import httpx
import pytest

from rusunawa.api_client import PortalApiClient
from rusunawa.config import Settings
from rusunawa.dates import DateRangeValidator

BASE_URL = "http://backend.test/v1"
TODAY = date(2025, 3, 10)


class FakeBackend:
    """Routes requests by (method, path) to canned responses or callables."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, json=None, status=200, handler=None):
        self.routes[(method, path)] = handler or (lambda request: httpx.Response(status, json=json))
        return self

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and self._path(r) == path]

    @staticmethod
    def _path(request):
        path = request.url.path
        return path[len("/v1"):] if path.startswith("/v1") else path

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, self._path(request)))
        if route is None:
            return httpx.Response(404, json={"message": "Not found"})
        return route(request)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def config():
    return Settings(api_base_url=BASE_URL, api_max_retries=0, api_retry_backoff_seconds=0.5)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def api(backend, config, sleeps):
    client = PortalApiClient(config, transport=httpx.MockTransport(backend), sleep=sleeps.append)
    yield client
    client.close()


@pytest.fixture
def validator():
    return DateRangeValidator(today=lambda: TODAY)
