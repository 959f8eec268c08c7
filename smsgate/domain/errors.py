"""Error taxonomy shared by providers, the HTTP layer and the lifecycle."""
from __future__ import annotations


class GatewayError(Exception):
    """Base class for gateway errors."""

    pass


class ValidationError(GatewayError):
    """A required request field is missing (400)."""

    pass


class CapabilityUnsupportedError(GatewayError):
    """The provider lacks an optional capability the request needs (403)."""

    pass


class ProviderNotReadyError(GatewayError):
    """The provider has not finished setup, or is shutting down (503)."""

    pass


class DeliveryError(GatewayError):
    """The backend rejected the message or could not reach the contact (500)."""

    pass


class UploadExtractionError(GatewayError):
    """The attachment form part is missing or malformed (500)."""

    pass


class ForwardingError(GatewayError):
    """An inbound message could not be relayed to the webhook. Logged and dropped."""

    pass


class ConfigError(GatewayError):
    """Configuration is unusable for the selected provider."""

    pass


class ProviderSetupError(GatewayError):
    """Provider initialization failed."""

    pass


class FatalStartupError(GatewayError):
    """Provider setup or HTTP bind failed; the process must exit."""

    pass
