"""Low-level HTTP client for Microsoft Graph.

Handles the client-credentials token request and authenticated JSON calls.
"""
from __future__ import annotations
import logging
from typing import Any, Optional, Dict

import requests

from ..exceptions import AuthenticationError, GraphAPIError, ValidationError
from ..schemas import parse_token_response

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
LOGIN_BASE_URL = "https://login.microsoftonline.com"
DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


class GraphClient:
    """HTTP client for the Microsoft Graph endpoints used by the sync job.

    The bearer token is not stored on the client; callers obtain it with
    ``authenticate`` and pass it to every call.

    Usage:
        client = GraphClient()
        token = client.authenticate(tenant_id, client_id, client_secret)
        page = client.get_json("/groups/<id>/members", token)
    """

    def __init__(
        self,
        base_url: str = GRAPH_BASE_URL,
        login_base_url: str = LOGIN_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.login_base_url = login_base_url.rstrip("/")
        self.timeout = timeout

    def authenticate(self, tenant_id: str, client_id: str, client_secret: str, scope: str = DEFAULT_SCOPE) -> str:
        """Exchange application credentials for an access token.

        Args:
            tenant_id: Entra ID tenant id (or "organizations")
            client_id: Application (client) id
            client_secret: Application client secret
            scope: Requested scope

        Returns:
            Access token

        Raises:
            AuthenticationError: On transport failure, non-200 status or a
                malformed token response
        """
        url = f"{self.login_base_url}/{tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": scope,
        }
        logger.info(f"Requesting access token for client {client_id} in tenant {tenant_id}")
        try:
            resp = requests.post(url, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AuthenticationError(f"Token request failed: {exc}") from exc

        if resp.status_code != 200:
            raise AuthenticationError(f"Token endpoint returned {resp.status_code}: {resp.text[:200]}")

        try:
            token = parse_token_response(resp.json())
        except ValueError as exc:
            raise AuthenticationError("Token endpoint returned a non-JSON body") from exc
        except ValidationError as exc:
            raise AuthenticationError(f"Invalid token response: {exc}") from exc

        logger.info("Successfully authenticated")
        return token

    def get_json(self, path: str, token: str, params: Optional[Dict] = None) -> Any:
        """Execute an authenticated GET and decode the JSON body.

        Args:
            path: API path relative to the Graph base URL, or an absolute
                URL (e.g. an ``@odata.nextLink``)
            token: Bearer token
            params: Query parameters

        Raises:
            GraphAPIError: On transport failure or HTTP error
            ValidationError: If the body is not JSON
        """
        url = self._url(path)
        try:
            resp = requests.get(url, params=params, headers=self._headers(token), timeout=self.timeout)
        except requests.RequestException as exc:
            raise GraphAPIError(0, str(exc), url) from exc
        return self._decode(resp, url)

    def post_json(self, path: str, token: str, json: Optional[Dict] = None) -> Any:
        """Execute an authenticated POST with a JSON payload and decode the response."""
        url = self._url(path)
        headers = self._headers(token)
        headers["Content-Type"] = "application/json"
        try:
            resp = requests.post(url, json=json, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GraphAPIError(0, str(exc), url) from exc
        return self._decode(resp, url)

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _decode(self, resp: requests.Response, url: str) -> Any:
        logger.debug(f"{url} -> {resp.status_code}")
        self._handle_error(resp, url)
        try:
            return resp.json()
        except ValueError as exc:
            raise ValidationError("$", f"response from {url} is not valid JSON") from exc

    @staticmethod
    def _handle_error(resp: requests.Response, url: str) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            GraphAPIError: If response status is outside the 2xx range
        """
        if not 200 <= resp.status_code <= 299:
            raise GraphAPIError(resp.status_code, resp.text[:500], url)
