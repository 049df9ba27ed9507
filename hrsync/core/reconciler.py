"""Converge local role assignments with directory group membership."""
from __future__ import annotations
import logging

from .models import MembershipSet, ReconcileResult
from .store import UserStore

logger = logging.getLogger(__name__)

DEFAULT_CREATED_BY = "group-sync"


class DirectorySyncReconciler:
    """Apply the demote, promote and insert-missing phases, in that order.

    Each phase is a single idempotent statement committed on its own. A
    ``StoreError`` from any phase aborts the remaining ones; re-running the
    whole reconciliation afterwards is safe.
    """

    def __init__(
        self,
        store: UserStore,
        employee_group_id: int,
        advisor_group_id: int,
        default_language_id: int,
        created_by: str = DEFAULT_CREATED_BY,
    ):
        if employee_group_id == advisor_group_id:
            raise ValueError("employee_group_id and advisor_group_id must differ")
        self.store = store
        self.employee_group_id = employee_group_id
        self.advisor_group_id = advisor_group_id
        self.default_language_id = default_language_id
        self.created_by = created_by

    def reconcile(self, membership: MembershipSet, dry_run: bool = False) -> ReconcileResult:
        """Make ``user_type_id`` agree with ``membership``.

        Args:
            membership: Confirmed HR advisor external ids
            dry_run: Report what would change without writing

        Returns:
            External ids demoted, promoted and created

        Raises:
            StoreError: On any database failure
        """
        prefix = "[dry-run] " if dry_run else ""
        member_ids = membership.ids

        logger.info(f"{prefix}Setting all non-HR advisors to employee group {self.employee_group_id}")
        demoted = self.store.demote_non_members(member_ids, self.employee_group_id, dry_run=dry_run)
        logger.info(f"{prefix}Demoted {len(demoted)} users")

        logger.info(f"{prefix}Setting all HR advisors to HR advisor group {self.advisor_group_id}")
        promoted = self.store.promote_members(member_ids, self.advisor_group_id, dry_run=dry_run)
        logger.info(f"{prefix}Promoted {len(promoted)} users")

        logger.info(f"{prefix}Creating missing HR advisors")
        created = self.store.insert_missing(
            membership.members(),
            self.advisor_group_id,
            self.default_language_id,
            self.created_by,
            dry_run=dry_run,
        )
        logger.info(f"{prefix}Created {len(created)} users")

        return ReconcileResult(demoted=demoted, promoted=promoted, created=created)
