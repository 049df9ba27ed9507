"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import URL, make_url

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 20
MAX_PAGE_SIZE = 999

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info(f"[settings] Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            logger.warning(f"[settings] Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.info(f"[settings] Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


def _get_bool(var_name: str, default: bool) -> bool:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {var_name} must be a boolean, got {raw!r}")


def _get_int(var_name: str, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw.strip())
        except ValueError:
            raise ValueError(f"Environment variable {var_name} must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ValueError(f"Environment variable {var_name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"Environment variable {var_name} must be <= {maximum}, got {value}")
    return value


def _get_float(var_name: str, default: float) -> float:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"Environment variable {var_name} must be positive, got {value}")
    return value


def _get_required(var_name: str, value: Optional[str] = None) -> str:
    """Return ``value`` or the environment variable, failing when both are empty."""
    value = value if value is not None else os.environ.get(var_name)
    if value and value.strip():
        return value.strip()
    raise RuntimeError(f"Environment variable {var_name} is required.")


def _split_list(raw: str) -> list[str]:
    seen: list[str] = []
    for item in raw.split(","):
        item = item.strip()
        if item and item not in seen:
            seen.append(item)
    return seen


@dataclass
class SyncConfig:
    """Group synchronization configuration container."""
    # Directory (Microsoft Entra ID / Graph)
    group_ids: list[str]
    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False, default="")
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    login_base_url: str = "https://login.microsoftonline.com"
    batch_size: int = MAX_BATCH_SIZE
    page_size: int = MAX_PAGE_SIZE
    transitive_members: bool = True
    request_timeout: float = 10.0

    # Role assignment
    default_language_id: int = 0
    employee_group_id: int = 0
    advisor_group_id: int = 3
    created_by: str = "group-sync"

    # Database
    mssql_server: str = ""
    mssql_database: str = ""
    mssql_port: int = 1433
    mssql_user: str = ""
    mssql_password: str = field(repr=False, default="")
    mssql_encrypt: bool = True
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    database_url_override: str = field(repr=False, default="")

    # Run behaviour
    dry_run: bool = True
    allow_empty_membership: bool = True

    def __post_init__(self) -> None:
        if not self.group_ids:
            raise ValueError("At least one HR advisor group id is required")
        if self.employee_group_id == self.advisor_group_id:
            raise ValueError("MSSQL_EMPLOYEE_GROUP_ID and MSSQL_HR_ADVISOR_GROUP_ID must differ")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    @property
    def database_url(self) -> URL:
        """SQLAlchemy URL for the local user store.

        ``DATABASE_URL`` wins when set; otherwise a SQL Server URL is built
        from the MSSQL_* settings.

        Raises:
            RuntimeError: If neither an override nor the server identity is configured
        """
        if self.database_url_override:
            return make_url(self.database_url_override)

        missing = [
            name
            for name, value in (
                ("MSSQL_SERVER", self.mssql_server),
                ("MSSQL_DATABASE", self.mssql_database),
                ("MSSQL_USER", self.mssql_user),
                ("MSSQL_PASSWORD", self.mssql_password),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Database configuration incomplete, missing: {', '.join(missing)}")

        return URL.create(
            "mssql+pyodbc",
            username=self.mssql_user,
            password=self.mssql_password,
            host=self.mssql_server,
            port=self.mssql_port,
            database=self.mssql_database,
            query={
                "driver": self.odbc_driver,
                "Encrypt": "yes" if self.mssql_encrypt else "no",
            },
        )


def load_settings(group_ids: Optional[list[str]] = None) -> SyncConfig:
    """Load sync settings from environment and /run/secrets.

    Args:
        group_ids: Directory group ids from the command line; when given,
            HR_ADVISOR_GROUP_IDS is not read

    Raises:
        RuntimeError: If a required value is missing
        ValueError: If a value cannot be parsed or the combination is invalid
    """
    if group_ids:
        group_ids = _split_list(",".join(group_ids))
    else:
        group_ids = _split_list(_get_required("HR_ADVISOR_GROUP_IDS"))
    tenant_id = _get_required("ENTRA_TENANT_ID")
    client_id = _get_required("ENTRA_CLIENT_ID")
    client_secret = _get_required(
        "ENTRA_CLIENT_SECRET",
        _load_secret_from_file("entra_client_secret", "ENTRA_CLIENT_SECRET") or "",
    )

    database_url_override = os.environ.get("DATABASE_URL", "").strip()
    mssql_password = _load_secret_from_file("mssql_password", "MSSQL_PASSWORD") or ""

    config = SyncConfig(
        group_ids=group_ids,
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        graph_base_url=os.environ.get("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0"),
        login_base_url=os.environ.get("ENTRA_LOGIN_URL", "https://login.microsoftonline.com"),
        batch_size=_get_int("GRAPH_BATCH_SIZE", MAX_BATCH_SIZE, minimum=1, maximum=MAX_BATCH_SIZE),
        page_size=_get_int("GRAPH_PAGE_SIZE", MAX_PAGE_SIZE, minimum=1, maximum=MAX_PAGE_SIZE),
        transitive_members=_get_bool("GRAPH_TRANSITIVE_MEMBERS", True),
        request_timeout=_get_float("GRAPH_REQUEST_TIMEOUT", 10.0),
        default_language_id=_get_int("MSSQL_DEFAULT_LANGUAGE_ID", 0),
        employee_group_id=_get_int("MSSQL_EMPLOYEE_GROUP_ID", 0),
        advisor_group_id=_get_int("MSSQL_HR_ADVISOR_GROUP_ID", 3),
        created_by=os.environ.get("SYNC_CREATED_BY", "group-sync").strip() or "group-sync",
        mssql_server=os.environ.get("MSSQL_SERVER", "").strip(),
        mssql_database=os.environ.get("MSSQL_DATABASE", "").strip(),
        mssql_port=_get_int("MSSQL_PORT", 1433, minimum=1, maximum=65535),
        mssql_user=os.environ.get("MSSQL_USER", "").strip(),
        mssql_password=mssql_password,
        mssql_encrypt=_get_bool("MSSQL_ENCRYPT", True),
        odbc_driver=os.environ.get("MSSQL_ODBC_DRIVER", "ODBC Driver 18 for SQL Server"),
        database_url_override=database_url_override,
        dry_run=_get_bool("DRY_RUN", True),
        allow_empty_membership=_get_bool("SYNC_ALLOW_EMPTY_MEMBERSHIP", True),
    )

    if not database_url_override:
        # Fail at startup rather than on first connection
        _ = config.database_url

    mode_label = "DRY-RUN" if config.dry_run else "APPLY"
    logger.info(
        f"[settings] Mode={mode_label}; groups={','.join(config.group_ids)}; "
        f"employee_group={config.employee_group_id}; advisor_group={config.advisor_group_id}"
    )
    return config
