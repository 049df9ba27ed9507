"""Shape validation for payloads received from Microsoft Graph.

Every parser accepts unknown extra fields and rejects documents that are
missing required fields or carry the wrong primitive types. Parsers are
pure: they never mutate their input.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .exceptions import ValidationError
from .models import DirectoryMember


class Shape(str, Enum):
    """Known payload shapes."""
    TOKEN = "token"
    MEMBER_PAGE = "member_page"
    BATCH_RESPONSE = "batch_response"
    USER = "user"
    ERROR_BODY = "error_body"


@dataclass(frozen=True)
class MemberPage:
    """One page of a group member listing."""
    items: list[dict] = field(default_factory=list)
    next_link: Optional[str] = None


@dataclass(frozen=True)
class BatchResponse:
    """One raw sub-response of a ``$batch`` call."""
    id: str
    status: int
    body: Any = None


def _require_object(payload: Any, path: str) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(path, f"expected object, got {type(payload).__name__}")
    return payload


def _require(payload: dict, key: str, expected: type, path: str) -> Any:
    field_path = f"{path}.{key}" if path else key
    if key not in payload:
        raise ValidationError(field_path, "required field is missing")
    value = payload[key]
    # bool is a subclass of int; a JSON true is never a status code
    if expected is int and isinstance(value, bool):
        raise ValidationError(field_path, "expected int, got bool")
    if not isinstance(value, expected):
        raise ValidationError(field_path, f"expected {expected.__name__}, got {type(value).__name__}")
    return value


def _optional_str(payload: dict, key: str, path: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        field_path = f"{path}.{key}" if path else key
        raise ValidationError(field_path, f"expected str or null, got {type(value).__name__}")
    return value


def parse_token_response(payload: Any) -> str:
    """Validate an OAuth2 token response.

    Args:
        payload: Decoded JSON body of the token endpoint

    Returns:
        The access token

    Raises:
        ValidationError: If ``access_token`` is missing, not a string or empty
    """
    data = _require_object(payload, "$")
    token = _require(data, "access_token", str, "")
    if not token.strip():
        raise ValidationError("access_token", "must not be empty")
    return token


def parse_member_page(payload: Any) -> MemberPage:
    """Validate a paginated member listing (``value`` + ``@odata.nextLink``)."""
    data = _require_object(payload, "$")
    items = _require(data, "value", list, "")
    for index, item in enumerate(items):
        _require_object(item, f"value[{index}]")
    next_link = _optional_str(data, "@odata.nextLink", "")
    return MemberPage(items=list(items), next_link=next_link or None)


def parse_batch_response(payload: Any) -> list[BatchResponse]:
    """Validate a ``$batch`` response body.

    Args:
        payload: Decoded JSON body of the batch endpoint

    Returns:
        One BatchResponse per sub-response, in document order

    Raises:
        ValidationError: If the envelope or any sub-response lacks id/status
    """
    data = _require_object(payload, "$")
    responses = _require(data, "responses", list, "")
    parsed = []
    for index, raw in enumerate(responses):
        path = f"responses[{index}]"
        item = _require_object(raw, path)
        parsed.append(
            BatchResponse(
                id=_require(item, "id", str, path),
                status=_require(item, "status", int, path),
                body=item.get("body"),
            )
        )
    return parsed


def parse_user(payload: Any) -> DirectoryMember:
    """Validate a Graph user object."""
    data = _require_object(payload, "$")
    external_id = _require(data, "id", str, "")
    if not external_id.strip():
        raise ValidationError("id", "must not be empty")
    return DirectoryMember(
        external_id=external_id,
        display_name=_optional_str(data, "displayName", ""),
        given_name=_optional_str(data, "givenName", ""),
        surname=_optional_str(data, "surname", ""),
        mail=_optional_str(data, "mail", ""),
    )


def parse_error_body(payload: Any) -> tuple[str, str]:
    """Extract ``(code, message)`` from a Graph error body.

    Never raises; anything unexpected maps to ``("Unknown", "")``. Only used
    for reporting.
    """
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return "Unknown", ""
    code = error.get("code")
    message = error.get("message")
    return (
        code if isinstance(code, str) and code else "Unknown",
        message if isinstance(message, str) else "",
    )


_PARSERS = {
    Shape.TOKEN: parse_token_response,
    Shape.MEMBER_PAGE: parse_member_page,
    Shape.BATCH_RESPONSE: parse_batch_response,
    Shape.USER: parse_user,
    Shape.ERROR_BODY: parse_error_body,
}


def validate(payload: Any, shape: Shape) -> Any:
    """Validate ``payload`` against ``shape`` and return the typed value."""
    try:
        parser = _PARSERS[Shape(shape)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown payload shape: {shape!r}") from None
    return parser(payload)
