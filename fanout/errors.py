"""Service-level exceptions. Routers map these onto HTTP status codes."""


class FanoutError(Exception):
    """Base class for errors raised by the fan-out services."""


class ValidationError(FanoutError):
    """A required field is missing or malformed (HTTP 400)."""


class NotFoundError(FanoutError):
    """Unknown endpoint or webhook id (HTTP 404)."""


class InactiveEndpointError(NotFoundError):
    """The endpoint exists but is not active, so it cannot be targeted."""


class ConfigurationError(FanoutError):
    """No active endpoints are configured to receive a webhook (HTTP 500)."""
