from datetime import datetime
from typing import Any
from uuid import UUID

from src.domain.entities import Manga, ModerationStatus

# Every state is re-enterable: approval may be repeated, rejected work may be
# approved later, and any content change sends the item back to pending.
ALLOWED_TRANSITIONS: dict[ModerationStatus, frozenset[ModerationStatus]] = {
    "pending": frozenset({"pending", "approved", "rejected"}),
    "approved": frozenset({"pending", "approved", "rejected"}),
    "rejected": frozenset({"pending", "approved", "rejected"}),
}


def can_transition(current: ModerationStatus, new: ModerationStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def _transition(item: Manga, new_status: ModerationStatus, updates: dict[str, Any]) -> Manga:
    if not can_transition(item.status, new_status):
        raise ValueError(f"Invalid transition from {item.status} to {new_status}")
    return item.model_copy(update={"status": new_status, **updates})


def resubmit(item: Manga, now: datetime) -> Manga:
    """
    Re-arm moderation after a content change.

    Return a NEW Manga in `pending` with moderator fields cleared. Applying it
    twice gives the same result as applying it once.
    """
    return _transition(
        item,
        "pending",
        {
            "moderated_by": None,
            "moderated_at": None,
            "rejection_reason": None,
            "updated_at": now,
        },
    )


def approve(item: Manga, moderator_id: UUID, now: datetime) -> Manga:
    return _transition(
        item,
        "approved",
        {
            "moderated_by": moderator_id,
            "moderated_at": now,
            "rejection_reason": None,
            "updated_at": now,
        },
    )


def reject(item: Manga, moderator_id: UUID, now: datetime, reason: str | None = None) -> Manga:
    return _transition(
        item,
        "rejected",
        {
            "moderated_by": moderator_id,
            "moderated_at": now,
            "rejection_reason": (reason or "").strip(),
            "updated_at": now,
        },
    )


def is_public(item: Manga) -> bool:
    return item.status == "approved"
