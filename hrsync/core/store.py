"""Local user store access (SQLAlchemy Core).

Only the statements the sync job needs are implemented: two conditional
bulk updates, one insert-if-absent and the read queries behind dry runs.
Every public method runs in its own transaction and wraps driver errors in
``StoreError``.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import StoreError
from .models import DirectoryMember, LocalUserRecord

logger = logging.getLogger(__name__)

metadata = MetaData()

user_table = Table(
    "user",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_type_id", Integer, nullable=False),
    Column("language_id", Integer, nullable=False),
    Column("ms_entra_id", String(64), nullable=True, unique=True),
    Column("first_name", String(100), nullable=True),
    Column("last_name", String(100), nullable=True),
    Column("business_email_address", String(320), nullable=True),
    Column("user_created", String(50), nullable=True),
    Column("date_created", DateTime, nullable=True, server_default=func.current_timestamp()),
)


class UserStore:
    """Set-oriented operations on the ``user`` table.

    Usage:
        store = UserStore(create_engine(url))
        demoted = store.demote_non_members(member_ids, employee_group_id=0)
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _transaction(self, phase: str) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error(f"Store failure during {phase}: {exc}")
            raise StoreError(phase, str(exc)) from exc

    def create_schema(self) -> None:
        """Create the ``user`` table if it does not exist (local runs and tests)."""
        with self._transaction("create_schema") as conn:
            metadata.create_all(conn)

    # ─────────────────────────────────────────────────────────────────────
    # Reconciliation statements
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def _demote_clause(member_ids: Iterable[str], employee_group_id: int):
        ids = sorted(member_ids)
        return (
            user_table.c.ms_entra_id.is_not(None)
            & user_table.c.ms_entra_id.not_in(ids)
            & (user_table.c.user_type_id != employee_group_id)
        )

    @staticmethod
    def _promote_clause(member_ids: Iterable[str], advisor_group_id: int):
        ids = sorted(member_ids)
        return user_table.c.ms_entra_id.in_(ids) & (user_table.c.user_type_id != advisor_group_id)

    def demote_non_members(self, member_ids: Iterable[str], employee_group_id: int, dry_run: bool = False) -> list[str]:
        """Move every non-member that is not an employee back to the employee group.

        Rows without an external id are never touched.

        Returns:
            External ids of the affected (or, on dry run, matching) rows
        """
        clause = self._demote_clause(member_ids, employee_group_id)
        with self._transaction("demote") as conn:
            if dry_run:
                rows = conn.execute(select(user_table.c.ms_entra_id).where(clause))
            else:
                rows = conn.execute(
                    update(user_table)
                    .where(clause)
                    .values(user_type_id=employee_group_id)
                    .returning(user_table.c.ms_entra_id)
                )
            return sorted(row.ms_entra_id for row in rows)

    def promote_members(self, member_ids: Iterable[str], advisor_group_id: int, dry_run: bool = False) -> list[str]:
        """Move every member that is not yet an advisor to the advisor group.

        Returns:
            External ids of the affected (or, on dry run, matching) rows
        """
        ids = list(member_ids)
        if not ids:
            return []
        clause = self._promote_clause(ids, advisor_group_id)
        with self._transaction("promote") as conn:
            if dry_run:
                rows = conn.execute(select(user_table.c.ms_entra_id).where(clause))
            else:
                rows = conn.execute(
                    update(user_table)
                    .where(clause)
                    .values(user_type_id=advisor_group_id)
                    .returning(user_table.c.ms_entra_id)
                )
            return sorted(row.ms_entra_id for row in rows)

    def insert_missing(
        self,
        members: Iterable[DirectoryMember],
        advisor_group_id: int,
        language_id: int,
        created_by: str,
        dry_run: bool = False,
    ) -> list[str]:
        """Create a row for every member without one.

        One existence query and one multi-row insert, in a single
        transaction. The unique constraint on ``ms_entra_id`` rejects
        duplicates from overlapping runs.

        Returns:
            External ids of the created (or, on dry run, missing) rows,
            in membership order
        """
        candidates = list(members)
        if not candidates:
            return []
        with self._transaction("insert_missing") as conn:
            existing = set(
                conn.execute(
                    select(user_table.c.ms_entra_id).where(
                        user_table.c.ms_entra_id.in_([member.external_id for member in candidates])
                    )
                ).scalars()
            )
            missing = [member for member in candidates if member.external_id not in existing]
            if missing and not dry_run:
                conn.execute(
                    insert(user_table),
                    [
                        {
                            "user_type_id": advisor_group_id,
                            "language_id": language_id,
                            "ms_entra_id": member.external_id,
                            "first_name": member.given_name,
                            "last_name": member.surname,
                            "business_email_address": member.mail,
                            "user_created": created_by,
                        }
                        for member in missing
                    ],
                )
            return [member.external_id for member in missing]

    # ─────────────────────────────────────────────────────────────────────
    # Read helpers
    # ─────────────────────────────────────────────────────────────────────

    def list_users(self) -> list[LocalUserRecord]:
        """Return every row ordered by primary key."""
        with self._transaction("list_users") as conn:
            rows = conn.execute(select(user_table).order_by(user_table.c.id))
            return [_to_record(row) for row in rows]

    def get_by_external_id(self, external_id: str) -> Optional[LocalUserRecord]:
        with self._transaction("get_by_external_id") as conn:
            row = conn.execute(
                select(user_table).where(user_table.c.ms_entra_id == external_id)
            ).first()
            return _to_record(row) if row is not None else None


def _to_record(row) -> LocalUserRecord:
    return LocalUserRecord(
        id=row.id,
        external_id=row.ms_entra_id,
        role_group_id=row.user_type_id,
        first_name=row.first_name,
        last_name=row.last_name,
        business_email=row.business_email_address,
        language_id=row.language_id,
        created_by=row.user_created,
    )
