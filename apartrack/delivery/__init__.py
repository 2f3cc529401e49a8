# ============================================================================
# APARTRACK - Notification Delivery
# ============================================================================
# Email (SendGrid / SMTP) and in-app notification channels.
# ============================================================================

from .base import DeliveryChannel, DeliveryResult
from .email import EmailDelivery
from .internal import InternalDelivery

CHANNELS = {
    "email": EmailDelivery,
    "internal": InternalDelivery,
}


def get_channel(name: str = None) -> DeliveryChannel:
    """Build the channel named in config `reminder_channel` (or `name`)."""
    if name is None:
        from ..config import get_config
        name = get_config("reminder_channel", "email")
    try:
        return CHANNELS[name]()
    except KeyError:
        raise ValueError(f"Unknown delivery channel: {name!r}")


__all__ = [
    "DeliveryChannel",
    "DeliveryResult",
    "EmailDelivery",
    "InternalDelivery",
    "get_channel",
]
