"""Core Business Logic Module

Synchronizes HR advisor role assignments in the local ``user`` table with
the membership of Microsoft Entra ID groups.

Module Structure:
    - msgraph/          : Microsoft Graph client and batched member fetcher
    - schemas.py        : Payload shape validation
    - models.py         : Batch items, membership set, reports
    - store.py          : SQLAlchemy Core access to the user table
    - reconciler.py     : Demote / promote / insert-missing phases
    - sync_service.py   : End-to-end run
    - exceptions.py     : Error taxonomy

Usage Pattern:
    Import explicitly when needed:
        from hrsync.core.sync_service import GroupSyncService
        from hrsync.core.reconciler import DirectorySyncReconciler
        from hrsync.core.exceptions import SyncError
"""
