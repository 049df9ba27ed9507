"""Pytest shared fixtures for the group synchronization job."""
import json
import pathlib
import sys
from urllib.parse import urlparse, parse_qs

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from hrsync import audit
from hrsync.config.settings import SyncConfig
from hrsync.core.store import UserStore, user_table

GRAPH = "https://graph.microsoft.com/v1.0"
LOGIN = "https://login.microsoftonline.com"

EMPLOYEE = 0
ADVISOR = 3
LANGUAGE = 1


class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload, status_code: int = 200, url: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.url = url
        self.text = payload if isinstance(payload, str) else json.dumps(payload)

    def json(self):
        if isinstance(self._payload, str):
            raise ValueError("not json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


def user_body(user_id: str, given: str = None, surname: str = None, mail: str = None) -> dict:
    return {
        "@odata.context": f"{GRAPH}/$metadata#users/$entity",
        "id": user_id,
        "displayName": f"{given or ''} {surname or ''}".strip() or user_id,
        "givenName": given,
        "surname": surname,
        "mail": mail,
    }


class FakeGraph:
    """In-memory Microsoft Graph: token endpoint, member pages and $batch.

    - ``groups[group_id]`` is a list of pages; each page is a list of member
      entries (``{"@odata.type": ..., "id": ...}``).
    - ``users[user_id]`` is ``(status, body)`` for the batch sub-request;
      unknown ids answer 404.
    """

    def __init__(self):
        self.token_status = 200
        self.token_payload = {"token_type": "Bearer", "expires_in": 3599, "access_token": "test-token"}
        self.groups: dict[str, list[list[dict]]] = {}
        self.page_status: dict[str, int] = {}
        self.users: dict[str, tuple] = {}
        self.batch_status = 200
        self.batch_override = None
        self.token_calls = []
        self.get_calls = []
        self.batch_calls = []

    # ── fixtures helpers ────────────────────────────────────────────────
    def add_group(self, group_id: str, pages: list[list[str]]):
        self.groups[group_id] = [
            [{"@odata.type": "#microsoft.graph.user", "id": member_id} for member_id in page]
            for page in pages
        ]

    def add_user(self, user_id: str, given: str = None, surname: str = None, mail: str = None):
        self.users[user_id] = (200, user_body(user_id, given, surname, mail))

    def fail_user(self, user_id: str, status: int, code: str = "serviceNotAvailable", message: str = "Service unavailable"):
        self.users[user_id] = (status, {"error": {"code": code, "message": message}})

    # ── transport ───────────────────────────────────────────────────────
    def post(self, url, data=None, json=None, headers=None, timeout=None, **kwargs):
        if url.startswith(LOGIN) and url.endswith("/oauth2/v2.0/token"):
            self.token_calls.append(data)
            return StubResponse(self.token_payload, self.token_status, url)
        if url == f"{GRAPH}/$batch":
            self.batch_calls.append(json)
            if self.batch_status != 200:
                return StubResponse({"error": {"code": "BadRequest"}}, self.batch_status, url)
            if self.batch_override is not None:
                return StubResponse(self.batch_override, 200, url)
            responses = []
            for sub in json["requests"]:
                user_id = sub["url"].split("?")[0].rsplit("/", 1)[-1]
                status, body = self.users.get(
                    user_id,
                    (404, {"error": {"code": "Request_ResourceNotFound", "message": "Not found"}}),
                )
                responses.append({"id": sub["id"], "status": status, "headers": {}, "body": body})
            # Graph does not guarantee response order
            responses.reverse()
            return StubResponse({"responses": responses}, 200, url)
        raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        self.get_calls.append((url, params))
        parsed = urlparse(url)
        parts = parsed.path.split("/")
        if "groups" not in parts:
            raise RuntimeError(f"Unexpected HTTP GET in unit test: {url}")
        group_id = parts[parts.index("groups") + 1]
        relation = parts[parts.index("groups") + 2]
        if group_id in self.page_status:
            return StubResponse({"error": {"code": "Request_ResourceNotFound"}}, self.page_status[group_id], url)
        pages = self.groups.get(group_id, [[]])
        page_index = int(parse_qs(parsed.query).get("page", ["1"])[0]) - 1
        payload = {
            "@odata.context": f"{GRAPH}/$metadata#directoryObjects",
            "value": pages[page_index],
        }
        if page_index + 1 < len(pages):
            payload["@odata.nextLink"] = f"{GRAPH}/groups/{group_id}/{relation}?$select=id&page={page_index + 2}"
        return StubResponse(payload, 200, url)


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """Prevent unit tests from hitting live endpoints."""
    if request.node.get_closest_marker("integration"):
        return

    def _fail(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected network access in tests: {url}")

    monkeypatch.setattr(requests, "post", _fail)
    monkeypatch.setattr(requests, "get", _fail)


@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "group-sync.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir / "group-sync.jsonl"


@pytest.fixture()
def graph(monkeypatch):
    """Fake Microsoft Graph wired into requests.get/post."""
    fake = FakeGraph()
    monkeypatch.setattr(requests, "post", fake.post)
    monkeypatch.setattr(requests, "get", fake.get)
    return fake


# ─────────────────────────────────────────────────────────────────────────────
# Local Store
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def engine():
    """In-memory SQLite engine shared across connections."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture()
def store(engine):
    user_store = UserStore(engine)
    user_store.create_schema()
    return user_store


def seed_users(store: UserStore, rows: list[tuple]):
    """Insert ``(external_id, user_type_id)`` rows."""
    if not rows:
        return
    with store.engine.begin() as conn:
        conn.execute(
            insert(user_table),
            [
                {
                    "user_type_id": role,
                    "language_id": LANGUAGE,
                    "ms_entra_id": external_id,
                    "first_name": "Seed",
                    "last_name": external_id or "local",
                    "user_created": "registration",
                }
                for external_id, role in rows
            ],
        )


def roles_by_external_id(store: UserStore) -> dict:
    return {record.external_id: record.role_group_id for record in store.list_users()}


def make_config(**overrides) -> SyncConfig:
    base = dict(
        group_ids=["hr-advisors"],
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        employee_group_id=EMPLOYEE,
        advisor_group_id=ADVISOR,
        default_language_id=LANGUAGE,
        database_url_override="sqlite://",
        dry_run=False,
    )
    base.update(overrides)
    return SyncConfig(**base)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
