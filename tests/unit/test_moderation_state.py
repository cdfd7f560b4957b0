from datetime import UTC, datetime
from uuid import uuid4

import pytest

from src.domain import state
from src.domain.entities import Manga

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


@pytest.fixture
def item() -> Manga:
    return Manga(
        title="X",
        genre=["Action"],
        chapters=1,
        description="d",
        release_year=2020,
        owner_user_id=uuid4(),
    )


def test_new_item_is_pending(item):
    assert item.status == "pending"
    assert item.moderated_by is None
    assert state.is_public(item) is False


def test_approve_records_moderator(item):
    moderator = uuid4()
    approved = state.approve(item, moderator, NOW)

    assert approved.status == "approved"
    assert approved.moderated_by == moderator
    assert approved.moderated_at == NOW
    assert approved.rejection_reason is None
    assert state.is_public(approved)
    # Original untouched
    assert item.status == "pending"


def test_reject_reason_defaults_to_empty(item):
    rejected = state.reject(item, uuid4(), NOW)
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == ""

    rejected = state.reject(item, uuid4(), NOW, "  blurry scans ")
    assert rejected.rejection_reason == "blurry scans"


def test_approve_clears_previous_rejection(item):
    rejected = state.reject(item, uuid4(), NOW, "no")
    approved = state.approve(rejected, uuid4(), NOW)
    assert approved.rejection_reason is None


@pytest.mark.parametrize("transition", ["approve", "reject"])
def test_resubmit_clears_moderation(item, transition):
    moderated = getattr(state, transition)(item, uuid4(), NOW)
    later = datetime(2024, 2, 1, tzinfo=UTC)

    again = state.resubmit(moderated, later)

    assert again.status == "pending"
    assert again.moderated_by is None
    assert again.moderated_at is None
    assert again.rejection_reason is None
    assert again.updated_at == later


def test_resubmit_is_idempotent(item):
    once = state.resubmit(state.approve(item, uuid4(), NOW), NOW)
    twice = state.resubmit(once, NOW)
    assert once == twice


def test_reapproval_allowed(item):
    first = state.approve(item, uuid4(), NOW)
    second_moderator = uuid4()
    second = state.approve(first, second_moderator, NOW)
    assert second.moderated_by == second_moderator


def test_every_state_reachable_from_every_state():
    for current in ("pending", "approved", "rejected"):
        for new in ("pending", "approved", "rejected"):
            assert state.can_transition(current, new)
