"""Tests for the SQLAlchemy-backed user store."""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from hrsync.core.exceptions import StoreError
from hrsync.core.models import DirectoryMember
from tests.conftest import ADVISOR, EMPLOYEE, LANGUAGE, roles_by_external_id, seed_users


def test_demote_moves_non_members_to_employee(store):
    seed_users(store, [("a", ADVISOR), ("b", ADVISOR), ("c", EMPLOYEE), ("d", 7)])

    demoted = store.demote_non_members({"b"}, EMPLOYEE)

    assert demoted == ["a", "d"]
    assert roles_by_external_id(store) == {"a": EMPLOYEE, "b": ADVISOR, "c": EMPLOYEE, "d": EMPLOYEE}


def test_demote_with_empty_membership_demotes_everyone_with_external_id(store):
    seed_users(store, [("a", ADVISOR), ("b", EMPLOYEE)])

    assert store.demote_non_members(set(), EMPLOYEE) == ["a"]


def test_rows_without_external_id_are_never_touched(store):
    seed_users(store, [(None, ADVISOR), (None, 5), ("a", ADVISOR)])

    store.demote_non_members({"zzz"}, EMPLOYEE)
    store.promote_members({"zzz"}, ADVISOR)

    roles = [(record.external_id, record.role_group_id) for record in store.list_users()]
    assert roles == [(None, ADVISOR), (None, 5), ("a", EMPLOYEE)]


def test_promote_only_touches_members_not_yet_advisor(store):
    seed_users(store, [("a", EMPLOYEE), ("b", ADVISOR), ("c", EMPLOYEE)])

    promoted = store.promote_members(["c", "b", "missing"], ADVISOR)

    assert promoted == ["c"]
    assert roles_by_external_id(store) == {"a": EMPLOYEE, "b": ADVISOR, "c": ADVISOR}


def test_promote_with_no_members_is_a_no_op(store):
    seed_users(store, [("a", EMPLOYEE)])
    assert store.promote_members([], ADVISOR) == []


def test_dry_run_reports_matches_without_writing(store):
    seed_users(store, [("a", ADVISOR), ("b", EMPLOYEE)])

    assert store.demote_non_members({"b"}, EMPLOYEE, dry_run=True) == ["a"]
    assert store.promote_members({"b"}, ADVISOR, dry_run=True) == ["b"]
    created = store.insert_missing([DirectoryMember("c")], ADVISOR, LANGUAGE, "group-sync", dry_run=True)

    assert created == ["c"]
    assert roles_by_external_id(store) == {"a": ADVISOR, "b": EMPLOYEE}


def test_insert_missing_creates_rows_with_member_fields(store):
    seed_users(store, [("a", EMPLOYEE)])
    members = [
        DirectoryMember("a", "Ana Existing", "Ana", "Existing"),
        DirectoryMember("c", "Chris Doe", "Chris", "Doe", "chris.doe@example.gc.ca"),
        DirectoryMember("b"),
    ]

    created = store.insert_missing(members, ADVISOR, LANGUAGE, "group-sync")

    assert created == ["c", "b"]
    record = store.get_by_external_id("c")
    assert record.role_group_id == ADVISOR
    assert record.first_name == "Chris"
    assert record.last_name == "Doe"
    assert record.business_email == "chris.doe@example.gc.ca"
    assert record.language_id == LANGUAGE
    assert record.created_by == "group-sync"
    assert store.get_by_external_id("b").first_name is None
    # Existing rows keep their role; promotion is a separate phase
    assert store.get_by_external_id("a").role_group_id == EMPLOYEE


def test_insert_missing_is_idempotent(store):
    members = [DirectoryMember("a"), DirectoryMember("b")]

    assert store.insert_missing(members, ADVISOR, LANGUAGE, "group-sync") == ["a", "b"]
    assert store.insert_missing(members, ADVISOR, LANGUAGE, "group-sync") == []
    assert len(store.list_users()) == 2


def test_unique_external_id_is_enforced(store):
    seed_users(store, [("a", ADVISOR)])

    with pytest.raises(IntegrityError):
        seed_users(store, [("a", EMPLOYEE)])


def test_duplicate_insert_rolls_back_and_raises_store_error(store):
    members = [DirectoryMember("a"), DirectoryMember("a")]

    with pytest.raises(StoreError) as excinfo:
        store.insert_missing(members, ADVISOR, LANGUAGE, "group-sync")

    assert excinfo.value.phase == "insert_missing"
    assert store.list_users() == []


def test_driver_errors_are_wrapped(store):
    with store.engine.begin() as conn:
        conn.execute(text('DROP TABLE "user"'))

    with pytest.raises(StoreError) as excinfo:
        store.demote_non_members({"a"}, EMPLOYEE)
    assert excinfo.value.phase == "demote"


def test_get_by_external_id_missing_returns_none(store):
    assert store.get_by_external_id("nobody") is None


def test_seeding_no_rows_leaves_table_empty(store):
    seed_users(store, [])
    assert store.list_users() == []
