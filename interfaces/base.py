import logging
from abc import ABC, abstractmethod

logger = logging.getLogger("interfaces.base")


class DeliveryAdapter(ABC):
    """
    Abstract base class for notification delivery channels.
    Decouples the scheduler from how a message actually reaches the user.
    """

    @abstractmethod
    async def deliver(self, text: str, tag: str, idempotency_key: str) -> bool:
        """
        Pushes a message to the user.

        Args:
            text: Destination-agnostic message text.
            tag: Notification category (e.g. "brief", "alert", "reminder").
            idempotency_key: Stable per-message key; a key that was already
                delivered must not produce a second message.

        Returns:
            True when the channel accepted the message.
        """
        pass

    async def close(self) -> None:
        """Release any network resources held by the adapter."""
        pass
