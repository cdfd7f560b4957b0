from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from src.domain import state
from src.domain.entities import MODERATION_FIELDS, CoverRef, FileAttachment, Manga, User
from src.domain.errors import ConflictError, NotFoundError

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def make_manga(owner_id=None, created_at=T0, **kwargs) -> Manga:
    return Manga(
        title=kwargs.pop("title", "Title"),
        genre=["Action", "Drama"],
        chapters=3,
        description="desc",
        release_year=2020,
        owner_user_id=owner_id or uuid4(),
        created_at=created_at,
        updated_at=created_at,
        **kwargs,
    )


def image(page_number, **kwargs) -> FileAttachment:
    return FileAttachment(
        blob_id=uuid4(),
        filename=f"p{page_number}.png",
        original_name=f"p{page_number}.png",
        content_type="image/png",
        size_bytes=10,
        kind="image",
        page_number=page_number,
        uploaded_at=kwargs.pop("uploaded_at", T0),
    )


def test_insert_and_get_round_trip(manga_repo):
    item = make_manga(cover=CoverRef(blob_id=uuid4(), filename="c.png", uploaded_at=T0))
    manga_repo.insert(item)

    loaded = manga_repo.get_by_id(item.id)
    assert loaded == item
    assert loaded.genre == ["Action", "Drama"]


def test_get_missing(manga_repo):
    assert manga_repo.get_by_id(uuid4()) is None


def test_update_writes_moderation_fields(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    moderator = uuid4()
    manga_repo.update(state.reject(item, moderator, T0, "no"), MODERATION_FIELDS)

    loaded = manga_repo.get_by_id(item.id)
    assert loaded.status == "rejected"
    assert loaded.moderated_by == moderator
    assert loaded.rejection_reason == "no"


def test_add_file_keeps_order(manga_repo):
    item = make_manga()
    manga_repo.insert(item)

    first = image(2)
    second = FileAttachment(
        blob_id=uuid4(),
        filename="doc.pdf",
        original_name="doc.pdf",
        content_type="application/pdf",
        size_bytes=5,
        kind="pdf",
    )
    updated = manga_repo.add_file(item, first)
    updated = manga_repo.add_file(updated, second)

    loaded = manga_repo.get_by_id(item.id)
    assert [f.blob_id for f in loaded.files] == [first.blob_id, second.blob_id]
    assert loaded.files[1].page_number is None
    assert updated.files == loaded.files


def test_add_file_persists_item_changes(manga_repo):
    item = state.approve(make_manga(), uuid4(), T0)
    manga_repo.insert(item)

    manga_repo.add_file(state.resubmit(item, T0), image(1))

    loaded = manga_repo.get_by_id(item.id)
    assert loaded.status == "pending"
    assert loaded.moderated_by is None


def test_duplicate_image_page_is_conflict(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    manga_repo.add_file(item, image(1))

    with pytest.raises(ConflictError):
        manga_repo.add_file(item, image(1))

    # Nothing half-written
    assert len(manga_repo.get_by_id(item.id).files) == 1


def test_list_filters_and_orders_newest_first(manga_repo):
    owner = uuid4()
    old = make_manga(owner, created_at=T0, title="old")
    new = make_manga(owner, created_at=T0 + timedelta(days=1), title="new")
    other = state.approve(make_manga(created_at=T0 + timedelta(days=2)), uuid4(), T0)
    for m in (old, new, other):
        manga_repo.insert(m)

    assert [m.title for m in manga_repo.list(owner_user_id=owner)] == ["new", "old"]
    assert [m.id for m in manga_repo.list(status="approved")] == [other.id]
    assert len(manga_repo.list()) == 3


def test_delete_removes_files(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    manga_repo.add_file(item, image(1))

    manga_repo.delete(item.id)

    assert manga_repo.get_by_id(item.id) is None
    assert manga_repo.referenced_blob_ids() == set()


def test_referenced_blob_ids(manga_repo):
    cover = CoverRef(blob_id=uuid4(), filename="c.png", uploaded_at=T0)
    item = make_manga(cover=cover)
    manga_repo.insert(item)
    page = image(1)
    manga_repo.add_file(item, page)

    assert manga_repo.referenced_blob_ids() == {cover.blob_id, page.blob_id}


def test_insert_duplicate_id_is_conflict(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    with pytest.raises(ConflictError):
        manga_repo.insert(item)


def test_update_of_deleted_item_is_not_found(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    manga_repo.delete(item.id)

    edited = state.resubmit(item.model_copy(update={"description": "e"}), T0)
    with pytest.raises(NotFoundError):
        manga_repo.update(edited, ["description", *MODERATION_FIELDS])

    assert manga_repo.get_by_id(item.id) is None


def test_add_file_to_deleted_item_is_not_found(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    manga_repo.delete(item.id)

    with pytest.raises(NotFoundError):
        manga_repo.add_file(item, image(1))
    assert manga_repo.referenced_blob_ids() == set()


def test_update_leaves_other_fields_alone(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    stale = manga_repo.get_by_id(item.id)

    # A cover lands after `stale` was read
    later = T0 + timedelta(minutes=1)
    cover = CoverRef(blob_id=uuid4(), filename="c.png", uploaded_at=later)
    manga_repo.update(
        stale.model_copy(update={"cover": cover, "updated_at": later}), ["cover"]
    )

    manga_repo.update(
        stale.model_copy(update={"title": "renamed", "updated_at": later}), ["title"]
    )

    loaded = manga_repo.get_by_id(item.id)
    assert loaded.title == "renamed"
    assert loaded.cover == cover


def test_moderation_of_changed_item_is_conflict(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    stale = manga_repo.get_by_id(item.id)

    later = T0 + timedelta(minutes=1)
    cover = CoverRef(blob_id=uuid4(), filename="c.png", uploaded_at=later)
    manga_repo.update(
        state.resubmit(stale.model_copy(update={"cover": cover}), later),
        ["cover", *MODERATION_FIELDS],
    )

    with pytest.raises(ConflictError):
        manga_repo.update(
            state.approve(stale, uuid4(), later),
            MODERATION_FIELDS,
            expected_updated_at=stale.updated_at,
        )

    loaded = manga_repo.get_by_id(item.id)
    assert loaded.status == "pending"
    assert loaded.moderated_by is None
    assert loaded.cover == cover


def test_moderation_of_unchanged_item(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    current = manga_repo.get_by_id(item.id)
    moderator = uuid4()

    manga_repo.update(
        state.approve(current, moderator, T0 + timedelta(minutes=1)),
        MODERATION_FIELDS,
        expected_updated_at=current.updated_at,
    )

    loaded = manga_repo.get_by_id(item.id)
    assert loaded.status == "approved"
    assert loaded.moderated_by == moderator


def test_update_rejects_unknown_field(manga_repo):
    item = make_manga()
    manga_repo.insert(item)
    with pytest.raises(ValueError):
        manga_repo.update(item, ["owner_user_id"])


def test_user_repo_identity(user_repo):
    user = User(email="mod@example.com", display_name="Mod", password_hash="x", role="moderator")
    user_repo.save(user)

    identity = user_repo.get_identity(user.id)
    assert identity is not None
    assert identity.role == "moderator"
    assert user_repo.get_by_email("mod@example.com").id == user.id

    with pytest.raises(ConflictError):
        user_repo.save(
            User(email="mod@example.com", display_name="Dup", password_hash="x")
        )


def test_disabled_user_has_no_identity(user_repo):
    user = User(email="gone@example.com", display_name="Gone", password_hash="x", status="disabled")
    user_repo.save(user)
    assert user_repo.get_identity(user.id) is None
