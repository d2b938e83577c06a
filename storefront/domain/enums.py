import enum


class OrderStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentProvider(str, enum.Enum):
    paystack = "paystack"


class CouponKind(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class TransitionActor(str, enum.Enum):
    """Who is asking for an order status change."""

    reconciler = "reconciler"
    admin = "admin"
