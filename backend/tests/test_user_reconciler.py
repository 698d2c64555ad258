from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from identity_sync.models.user import User
from identity_sync.services import users as users_service
from identity_sync.services.identity_events import IdentityEvent, IdentityEventKind
from identity_sync.services.users import (
    MissingRequiredFieldError,
    ReconcileAction,
    ReconciliationError,
    get_user_by_subject_id,
    reconcile_identity_event,
)


def _created(subject_id="u1", email="a@b.com", name="A B", image=None) -> IdentityEvent:
    return IdentityEvent(IdentityEventKind.USER_CREATED, subject_id, email, name, image)


def _updated(subject_id="u1", email=None, name=None, image=None) -> IdentityEvent:
    return IdentityEvent(IdentityEventKind.USER_UPDATED, subject_id, email, name, image)


def _deleted(subject_id="u1") -> IdentityEvent:
    return IdentityEvent(IdentityEventKind.USER_DELETED, subject_id)


def _snapshot(db_session) -> list[tuple]:
    db_session.expire_all()
    return [(u.id, u.subject_id, u.email, u.name, u.image) for u in db_session.query(User).order_by(User.id)]


# ---------------------------------------------------------------------------
# user.created
# ---------------------------------------------------------------------------


def test_create_inserts_record(db_session):
    result = reconcile_identity_event(db_session, _created(image="https://img/u1.png"))

    assert result.action is ReconcileAction.CREATED
    user = get_user_by_subject_id(db_session, "u1")
    assert user is not None
    assert result.user_id == user.id
    assert (user.email, user.name, user.image) == ("a@b.com", "A B", "https://img/u1.png")


def test_create_twice_keeps_single_record(db_session):
    first = reconcile_identity_event(db_session, _created())
    before = _snapshot(db_session)

    second = reconcile_identity_event(db_session, _created())

    assert second.action is ReconcileAction.ALREADY_EXISTS
    assert second.user_id == first.user_id
    assert _snapshot(db_session) == before
    assert db_session.query(User).count() == 1


def test_create_without_email_fails(db_session):
    with pytest.raises(MissingRequiredFieldError) as excinfo:
        reconcile_identity_event(db_session, _created(email=None))

    assert excinfo.value.field == "email"
    assert excinfo.value.subject_id == "u1"
    assert isinstance(excinfo.value, ReconciliationError)
    assert db_session.query(User).count() == 0


def test_concurrent_create_resolves_to_existing(db_session, monkeypatch):
    # Another delivery inserted the same subject between our lookup and our insert.
    winner = User(subject_id="u1", email="a@b.com", name="A B")
    db_session.add(winner)
    db_session.commit()

    real_lookup = users_service.get_user_by_subject_id
    calls = {"n": 0}

    def _stale_first_lookup(db, subject_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_lookup(db, subject_id)

    monkeypatch.setattr(users_service, "get_user_by_subject_id", _stale_first_lookup)

    result = reconcile_identity_event(db_session, _created())

    assert result.action is ReconcileAction.ALREADY_EXISTS
    assert result.user_id == winner.id
    assert db_session.query(User).count() == 1


# ---------------------------------------------------------------------------
# user.updated
# ---------------------------------------------------------------------------


def test_update_with_only_email_leaves_name_and_image(db_session):
    reconcile_identity_event(db_session, _created(image="https://img/u1.png"))

    result = reconcile_identity_event(db_session, _updated(email="new@b.com"))

    assert result.action is ReconcileAction.UPDATED
    user = get_user_by_subject_id(db_session, "u1")
    assert user.email == "new@b.com"
    assert user.name == "A B"
    assert user.image == "https://img/u1.png"


def test_update_patches_present_fields(db_session):
    reconcile_identity_event(db_session, _created())

    reconcile_identity_event(db_session, _updated(name="Ada Lovelace", image="https://img/new.png"))

    user = get_user_by_subject_id(db_session, "u1")
    assert (user.email, user.name, user.image) == ("a@b.com", "Ada Lovelace", "https://img/new.png")


def test_update_never_blanks_fields(db_session):
    reconcile_identity_event(db_session, _created())

    reconcile_identity_event(db_session, _updated(email="", name="", image=""))

    user = get_user_by_subject_id(db_session, "u1")
    assert (user.email, user.name) == ("a@b.com", "A B")


def test_update_missing_record_is_not_fatal(db_session):
    result = reconcile_identity_event(db_session, _updated(email="ghost@b.com"))

    assert result.action is ReconcileAction.NOT_FOUND
    assert result.user_id is None
    assert db_session.query(User).count() == 0


def test_update_missing_record_upserts_when_enabled(db_session):
    result = reconcile_identity_event(db_session, _updated(email="late@b.com", name="Late"), upsert_on_update=True)

    assert result.action is ReconcileAction.CREATED
    user = get_user_by_subject_id(db_session, "u1")
    assert (user.email, user.name) == ("late@b.com", "Late")


def test_upsert_needs_an_email(db_session):
    result = reconcile_identity_event(db_session, _updated(name="No Email"), upsert_on_update=True)

    assert result.action is ReconcileAction.NOT_FOUND
    assert db_session.query(User).count() == 0


def test_update_applied_twice_is_idempotent(db_session):
    reconcile_identity_event(db_session, _created())
    event = _updated(email="twice@b.com", name="Twice")

    reconcile_identity_event(db_session, event)
    once = _snapshot(db_session)
    reconcile_identity_event(db_session, event)

    assert _snapshot(db_session) == once


# ---------------------------------------------------------------------------
# user.deleted
# ---------------------------------------------------------------------------


def test_delete_removes_record(db_session):
    created = reconcile_identity_event(db_session, _created())

    result = reconcile_identity_event(db_session, _deleted())

    assert result.action is ReconcileAction.DELETED
    assert result.user_id == created.user_id
    assert get_user_by_subject_id(db_session, "u1") is None


def test_delete_unknown_subject_succeeds(db_session):
    result = reconcile_identity_event(db_session, _deleted("nobody"))

    assert result.action is ReconcileAction.ALREADY_DELETED


def test_delete_twice_is_idempotent(db_session):
    reconcile_identity_event(db_session, _created())
    reconcile_identity_event(db_session, _created(subject_id="u2", email="c@d.com"))

    reconcile_identity_event(db_session, _deleted())
    once = _snapshot(db_session)
    second = reconcile_identity_event(db_session, _deleted())

    assert second.action is ReconcileAction.ALREADY_DELETED
    assert _snapshot(db_session) == once
    assert [row[1] for row in once] == ["u2"]


# ---------------------------------------------------------------------------
# Datastore failures
# ---------------------------------------------------------------------------


def test_datastore_error_becomes_reconciliation_error(db_session, monkeypatch):
    def _boom(db, subject_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(users_service, "get_user_by_subject_id", _boom)

    with pytest.raises(ReconciliationError):
        reconcile_identity_event(db_session, _deleted())
