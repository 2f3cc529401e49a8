# ============================================================================
# APARTRACK - Base Delivery Channel
# ============================================================================

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    recipient: str
    channel: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "recipient": self.recipient,
            "channel": self.channel,
            "message_id": self.message_id,
            "error": self.error,
        }


class DeliveryChannel(ABC):
    """
    Notification transport used by the reminder dispatcher.

    send() must not raise for delivery problems: it returns a failed
    DeliveryResult so a batch can carry on with the next recipient.
    """

    channel_name: str = "base"

    @abstractmethod
    def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        **kwargs,
    ) -> DeliveryResult:
        """Send a message through this channel."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the channel is configured."""
        pass

    def test_connection(self) -> bool:
        """Test if the channel is properly configured."""
        return self.is_configured()
