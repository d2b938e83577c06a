"""Celery task definitions package."""

from storefront.tasks import email  # noqa: F401
from storefront.tasks import payments  # noqa: F401

__all__ = ["email", "payments"]
