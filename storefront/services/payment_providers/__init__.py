"""Payment provider integrations."""


class PaymentProviderError(Exception):
    """Base error for payment providers."""


class PaymentProviderConfigurationError(PaymentProviderError):
    """Raised when provider configuration is invalid or missing."""


class PaymentProviderUnavailableError(PaymentProviderError):
    """Timeout, connection failure or 5xx: the outcome is unknown, retry later."""


class PaymentProviderRejectedError(PaymentProviderError):
    """The provider answered and refused the request."""
