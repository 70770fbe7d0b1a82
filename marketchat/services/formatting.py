from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from marketchat.core.config import settings
from marketchat.schemas.chat import ConversationRow, ConversationSummary, LastMessage, Profile


def time_label(value: Optional[datetime]) -> str:
    """``HH:MM`` (24h) in the display timezone, or ``""``."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    name = settings.DISPLAY_TIMEZONE or "UTC"
    tz = timezone.utc if name.upper() == "UTC" else ZoneInfo(name)
    return value.astimezone(tz).strftime("%H:%M")


def default_avatar(user_id: str) -> str:
    return settings.DEFAULT_AVATAR_URL.format(user_id=user_id)


def preview_text(last: Optional[LastMessage]) -> str:
    if last is None:
        return settings.NO_MESSAGES_PLACEHOLDER
    if last.content:
        return last.content
    if last.image_url:
        return settings.PHOTO_PLACEHOLDER
    return ""


def build_summary(
    row: ConversationRow,
    user_id: str,
    profiles: Dict[str, Profile],
) -> Optional[ConversationSummary]:
    other_id = row.other_participant(user_id)
    if other_id is None:
        return None
    profile = profiles.get(other_id)
    last = row.messages[0] if row.messages else None
    return ConversationSummary(
        id=row.id,
        other_user_id=other_id,
        name=(profile.name if profile else None) or settings.UNKNOWN_USER_NAME,
        avatar=(profile.avatar_url if profile else None) or default_avatar(other_id),
        last_message=preview_text(last),
        timestamp=time_label(last.created_at) if last else "",
        last_message_at=last.created_at if last else None,
    )


def sort_summaries(items: List[ConversationSummary], mode: Optional[str] = None) -> List[ConversationSummary]:
    """Newest first, conversations without messages last.

    ``display`` compares the ``HH:MM`` labels as strings, which is what the
    chat list has always shown; ``chronological`` uses the real timestamps.
    """
    mode = mode or settings.CONVERSATION_SORT
    with_ts = [c for c in items if c.timestamp]
    without_ts = [c for c in items if not c.timestamp]
    if mode == "chronological":
        with_ts.sort(key=lambda c: c.last_message_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
    else:
        with_ts.sort(key=lambda c: c.timestamp, reverse=True)
    return with_ts + without_ts
