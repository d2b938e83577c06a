import smtplib

from kombu.exceptions import OperationalError

from storefront.core.config import settings
from storefront.core.logging import get_logger
from storefront.models.order import Order
from storefront.tasks.email import send_email_task

logger = get_logger(__name__)


def _enqueue_email(to_email: str, subject: str, body: str) -> None:
    send_email_task.apply_async((to_email, subject, body), queue=settings.EMAIL_QUEUE, ignore_result=True)


def send_order_confirmation(to_email: str, order: Order) -> bool:
    """Queue the payment confirmation for ``order``.

    Returns False when the email could not be handed over. With eager Celery
    the SMTP delivery runs inline, so its errors surface here too; the payment
    is already committed by then.
    """
    subject = f"{settings.PROJECT_NAME} - Order {order.order_number} confirmed"
    lines = [f"- {item.product_name} x{item.quantity}: {item.line_total} {order.currency}" for item in order.items]
    body = "\n".join(
        [
            "Hello,",
            "",
            f"We received your payment for order {order.order_number}.",
            "",
            *lines,
            "",
            f"Discount: {order.discount_amount} {order.currency}",
            f"Total paid: {order.total_amount} {order.currency}",
            "",
            f"Thank you for shopping with {settings.PROJECT_NAME}.",
        ]
    )
    try:
        _enqueue_email(to_email, subject, body)
    except (OperationalError, smtplib.SMTPException, OSError):
        logger.exception("Could not queue order confirmation", extra={"order_number": order.order_number})
        return False
    return True
