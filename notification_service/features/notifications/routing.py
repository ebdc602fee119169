"""Channel routing: which channels to attempt for a recipient and category."""

from __future__ import annotations

from dataclasses import dataclass, field

from notification_service.features.notifications.models import Category, Channel

# Fixed dispatch order; channels are independent, not a fallback chain
CHANNEL_PRIORITY: tuple[Channel, ...] = (
    Channel.EMAIL,
    Channel.SMS,
    Channel.CHAT,
    Channel.IN_APP,
)


@dataclass(frozen=True, slots=True)
class RecipientPreferences:
    """Per-recipient opt-in map for channels and categories."""

    channels: frozenset[Channel] = field(default_factory=frozenset)
    categories: frozenset[Category] = field(default_factory=lambda: frozenset(Category))

    @classmethod
    def from_flags(
        cls,
        *,
        email: bool = False,
        sms: bool = False,
        chat: bool = False,
        in_app: bool = False,
        attendance: bool = True,
        grade: bool = True,
        event: bool = True,
        generic: bool = True,
    ) -> RecipientPreferences:
        channel_flags = {
            Channel.EMAIL: email,
            Channel.SMS: sms,
            Channel.CHAT: chat,
            Channel.IN_APP: in_app,
        }
        category_flags = {
            Category.ATTENDANCE: attendance,
            Category.GRADE: grade,
            Category.EVENT: event,
            Category.GENERIC: generic,
        }
        return cls(
            channels=frozenset(c for c, on in channel_flags.items() if on),
            categories=frozenset(c for c, on in category_flags.items() if on),
        )


class ChannelRouter:
    """Resolves enabled channels in priority order.

    An empty result means the recipient opted out of this category (or of
    every channel) and the caller records a skipped outcome.
    """

    def __init__(self, priority: tuple[Channel, ...] = CHANNEL_PRIORITY) -> None:
        self._priority = priority

    def route(self, preferences: RecipientPreferences, category: Category | str) -> list[Channel]:
        if Category(category) not in preferences.categories:
            return []
        return [channel for channel in self._priority if channel in preferences.channels]


__all__ = ["CHANNEL_PRIORITY", "ChannelRouter", "RecipientPreferences"]
