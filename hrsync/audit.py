"""Audit logging for group synchronization runs."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from hrsync.core.models import SyncReport

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "group-sync.jsonl"
_SECRET_PATHS = [
    Path(".runtime/secrets/audit_log_signing_key"),
    Path("/run/secrets/audit_log_signing_key"),
]


def _get_signing_key() -> bytes:
    """Get the audit signing key from environment or a secret file (loaded lazily)."""
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        # Explicitly empty disables signing
        return os.environ["AUDIT_LOG_SIGNING_KEY"].strip().encode("utf-8")
    for path in _SECRET_PATHS:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    demo_default = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
    return demo_default.strip().encode("utf-8")


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_sync_event(
    report: Optional[SyncReport],
    *,
    operator: str = "scheduler",
    success: bool = True,
    error: Optional[str] = None,
) -> None:
    """Append one signed event describing a sync run.

    Args:
        report: Run report, or None when the run aborted before producing one
        operator: Who triggered the run
        success: Whether the run completed
        error: Error class and message for aborted runs
    """
    _ensure_audit_dir()

    event: dict[str, Any] = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": "group_sync",
        "operator": operator,
        "success": success,
        "details": report.to_dict() if report is not None else {},
    }
    if error:
        event["error"] = error

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_sync_event(
    report: Optional[SyncReport],
    *,
    operator: str = "scheduler",
    success: bool = True,
    error: Optional[str] = None,
) -> bool:
    """Log a sync event without ever raising.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_sync_event(report, operator=operator, success=success, error=error)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"[audit] Failed to log group_sync event: {e}")
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, AttributeError):
                continue

    return total, valid
