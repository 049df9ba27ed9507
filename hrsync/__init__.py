"""HR advisor group synchronization job.

To run a synchronization:
    from hrsync.config import load_settings
    from hrsync.core.sync_service import run_group_sync

    report = run_group_sync(load_settings())
"""
