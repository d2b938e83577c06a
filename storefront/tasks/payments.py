from __future__ import annotations

import asyncio

from kombu.exceptions import OperationalError

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.core.logging import get_logger
from storefront.db.session_async import AsyncSessionLocal
from storefront.services import payment_service
from storefront.services.exceptions import PaymentGatewayUnavailableError

logger = get_logger(__name__)


async def _run_async(func, *args, **kwargs):
    async with AsyncSessionLocal() as session:
        return await func(session, *args, **kwargs)


def _run(func, *args, **kwargs):
    return asyncio.run(_run_async(func, *args, **kwargs))


@celery_app.task(
    name="payments.reconcile",
    bind=True,
    autoretry_for=(PaymentGatewayUnavailableError,),
    retry_backoff=True,
    retry_backoff_max=settings.RECONCILE_RETRY_BACKOFF_MAX_SECONDS,
    retry_jitter=True,
    max_retries=settings.RECONCILE_MAX_RETRIES,
    ignore_result=True,
)
def reconcile_payment_task(self, reference: str) -> None:
    """Retry a reconciliation the gateway could not answer in time."""
    order = _run(payment_service.reconcile, reference)
    logger.info(
        "Deferred reconciliation finished",
        extra={"reference": reference, "order_number": order.order_number, "attempt": self.request.retries},
    )


def schedule_reconcile(reference: str | None) -> bool:
    """Queue a later reconciliation for ``reference``; False when nothing was queued."""
    if not reference or not settings.RECONCILE_RETRY_ENABLED:
        return False
    if celery_app.conf.task_always_eager:
        # eager mode would run the task inside the current event loop
        logger.info("Deferred reconciliation skipped in eager mode", extra={"reference": reference})
        return False
    try:
        reconcile_payment_task.apply_async((reference,), queue=settings.PAYMENTS_QUEUE, countdown=30)
    except OperationalError:
        logger.exception("Could not queue deferred reconciliation", extra={"reference": reference})
        return False
    return True
