"""
Group Sync Service: one end-to-end synchronization run

    Entra ID groups ──> msgraph (auth, pages, $batch) ──> MembershipSet
                                                              │
    user table <── reconciler (demote, promote, insert) <─────┘

Failure semantics:
    - Authentication or page-level fetch failures abort before any write.
    - Item-level fetch failures never abort; they shrink the membership set
      and are reported as unconfirmed.
    - Store failures abort the remaining phases; earlier phases may already
      be committed and a full re-run is safe.
    - No automatic retry; that belongs to the scheduler.
"""

from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from hrsync import audit
from hrsync.config.settings import SyncConfig
from .exceptions import StoreError, SyncAbortedError, SyncError
from .models import BatchFailure, MembershipSet, SyncReport
from .msgraph import DirectoryBatchFetcher, GraphClient
from .reconciler import DirectorySyncReconciler
from .store import UserStore

logger = logging.getLogger(__name__)


class GroupSyncService:
    """Compose authentication, fetch and reconciliation into one run.

    Usage:
        service = GroupSyncService(config, GraphClient(), UserStore(engine))
        report = service.run()
    """

    def __init__(self, config: SyncConfig, graph_client: GraphClient, store: UserStore):
        self.config = config
        self.graph_client = graph_client
        self.store = store
        self.fetcher = DirectoryBatchFetcher(
            graph_client,
            batch_size=config.batch_size,
            page_size=config.page_size,
            transitive=config.transitive_members,
        )
        self.reconciler = DirectorySyncReconciler(
            store,
            employee_group_id=config.employee_group_id,
            advisor_group_id=config.advisor_group_id,
            default_language_id=config.default_language_id,
            created_by=config.created_by,
        )

    def run(self, dry_run: Optional[bool] = None, operator: str = "scheduler") -> SyncReport:
        """Execute one synchronization run.

        Args:
            dry_run: Overrides ``config.dry_run`` for this run when not None
            operator: Recorded in the audit trail

        Returns:
            SyncReport describing what changed (or would change)

        Raises:
            AuthenticationError: Token acquisition failed
            GraphAPIError: A page listing or batch call failed
            ValidationError: A page or batch envelope was malformed
            SyncAbortedError: Empty membership refused
            StoreError: A reconciliation phase failed
        """
        dry_run = self.config.dry_run if dry_run is None else dry_run
        try:
            report = self._run(dry_run)
        except SyncError as exc:
            logger.error(f"Group synchronization aborted: {type(exc).__name__}: {exc}")
            audit.safe_log_sync_event(
                None,
                operator=operator,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise
        audit.safe_log_sync_event(report, operator=operator, success=True)
        return report

    def _run(self, dry_run: bool) -> SyncReport:
        if dry_run:
            logger.warning("DRY RUN ENABLED -- No changes will be made.")

        token = self.graph_client.authenticate(
            self.config.tenant_id,
            self.config.client_id,
            self.config.client_secret,
        )

        items = self.fetcher.fetch_all(self.config.group_ids, token)
        membership = MembershipSet.from_items(items)
        unconfirmed = [item for item in items if isinstance(item, BatchFailure)]

        logger.info(f"Found {len(membership)} confirmed members in groups {','.join(self.config.group_ids)}")
        for failure in unconfirmed:
            logger.warning(
                f"Could not confirm member {failure.id}: [{failure.status}] "
                f"{failure.error_code} {failure.error_message}".rstrip()
            )

        if not membership and not dry_run and not self.config.allow_empty_membership:
            raise SyncAbortedError(
                f"Directory returned no confirmed members ({len(unconfirmed)} unconfirmed); "
                "refusing to demote every HR advisor. Set SYNC_ALLOW_EMPTY_MEMBERSHIP=true to override."
            )

        result = self.reconciler.reconcile(membership, dry_run=dry_run)

        report = SyncReport(
            created=result.created,
            promoted=result.promoted,
            demoted=result.demoted,
            unconfirmed=unconfirmed,
            member_count=len(membership),
            group_ids=list(self.config.group_ids),
            dry_run=dry_run,
        )
        logger.info(
            f"Group synchronization complete: dry_run={dry_run} members={report.member_count} "
            f"created={len(report.created)} promoted={len(report.promoted)} "
            f"demoted={len(report.demoted)} unconfirmed={len(report.unconfirmed)}"
        )
        return report


def run_group_sync(config: SyncConfig, dry_run: Optional[bool] = None, operator: str = "scheduler") -> SyncReport:
    """Build the Graph client and database engine from ``config`` and run once.

    Raises:
        StoreError: With phase "connect" if the engine cannot be created
    """
    graph_client = GraphClient(
        base_url=config.graph_base_url,
        login_base_url=config.login_base_url,
        timeout=config.request_timeout,
    )
    try:
        engine = create_engine(config.database_url, pool_pre_ping=True)
    except (SQLAlchemyError, ImportError) as exc:
        logger.error(f"Cannot create database engine: {exc}")
        raise StoreError("connect", str(exc)) from exc
    try:
        service = GroupSyncService(config, graph_client, UserStore(engine))
        return service.run(dry_run=dry_run, operator=operator)
    finally:
        engine.dispose()
