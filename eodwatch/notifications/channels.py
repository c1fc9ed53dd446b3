"""NotificationChannel protocol — interface for status message delivery."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from eodwatch.notifications.render import RenderedMessage


class DeliveryError(Exception):
    """A channel call (post, edit, alert) did not reach the chat service."""


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy.

    Every delivery method raises ``DeliveryError`` on failure.
    """

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'slack')."""
        ...

    @property
    def enabled(self) -> bool:
        """False when delivery is switched off; callers skip the cycle."""
        ...

    async def post_message(self, message: RenderedMessage) -> str:
        """Post a new message and return its opaque handle."""
        ...

    async def edit_message(self, handle: str, message: RenderedMessage) -> None:
        """Replace the content of a previously posted message."""
        ...

    async def post_alert(self, message: RenderedMessage) -> None:
        """Send a one-shot alert message."""
        ...
