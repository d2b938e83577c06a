# storefront/services/exceptions.py


class ServiceError(Exception):
    """Base class for service-layer errors.

    ``status_code`` is the HTTP status the API renders, ``code`` a stable
    machine-readable identifier and ``retryable`` tells clients whether the
    same request may succeed later without changes.
    """

    status_code: int = 400
    code: str = "service_error"
    retryable: bool = False

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


# --- Validation (400) ---

class DomainValidationError(ServiceError):
    """Invalid domain input."""
    code = "validation_error"


class InvalidQuantityError(DomainValidationError):
    """Raised when a quantity is below 1."""
    code = "invalid_quantity"


class InsufficientStockError(DomainValidationError):
    """Raised when the catalog cannot cover the requested quantity."""
    code = "insufficient_stock"


class EmptyCartError(DomainValidationError):
    code = "empty_cart"


class InvalidAmountError(DomainValidationError):
    code = "invalid_amount"


class CouponInvalidError(DomainValidationError):
    """Coupon missing, expired, already used or not eligible for the cart."""
    code = "coupon_invalid"


# --- Not found (404) ---

class ResourceNotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class UnknownReferenceError(ResourceNotFoundError):
    """A payment callback referenced a transaction we never created."""
    code = "unknown_reference"


# --- Conflict (409) ---

class ConflictError(ServiceError):
    """State conflict for the requested operation."""
    status_code = 409
    code = "conflict"


class CouponAlreadyAppliedError(ConflictError):
    code = "coupon_already_applied"


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"


class AmountMismatchError(ConflictError):
    """Client-side amount differs from the server-computed total."""
    code = "amount_mismatch"


class CartBusyError(ConflictError):
    code = "cart_busy"
    retryable = True


# --- Transient / external ---

class PaymentInitiationFailedError(ServiceError):
    """The gateway refused or could not start the transaction."""
    status_code = 502
    code = "payment_initiation_failed"
    retryable = True


class PaymentGatewayUnavailableError(ServiceError):
    """Gateway verification could not be completed; nothing was changed."""
    status_code = 503
    code = "payment_gateway_unavailable"
    retryable = True


# --- Integrity (401) ---

class InvalidSignatureError(ServiceError):
    """Webhook body was not signed by the payment gateway."""
    status_code = 401
    code = "invalid_signature"
