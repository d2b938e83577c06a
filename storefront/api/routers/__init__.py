from . import admin
from . import auth
from . import cart
from . import orders
from . import payments

__all__ = [
    "admin",
    "auth",
    "cart",
    "orders",
    "payments",
]
