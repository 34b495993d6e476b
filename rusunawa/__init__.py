# Package initializer for the rusunawa tenant portal backend.

"""
The `rusunawa` package contains the booking-eligibility service for the
rusunawa tenant portal.

Modules:

- ``config``: application settings loaded from environment variables.
- ``models``: Pydantic data models for rooms, tenants, bookings and rates.
- ``errors``: exception hierarchy shared by the client and the service.
- ``normalize``: parsing of backend API payloads into the models.
- ``api_client``: helpers for talking to the rusunawa backend REST API.
- ``dates``: rental-type specific date validation.
- ``occupancy``: occupancy, pricing and room list helpers.
- ``availability``: blocked-date and capacity checks.
- ``rates``: per rental type rate lookups.
- ``booking``: the booking form state machine.
- ``auth``: tenant sessions and the authentication service.
- ``main``: the FastAPI application definition.

"""
