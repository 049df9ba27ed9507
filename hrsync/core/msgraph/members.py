"""Group membership retrieval through paginated listings and JSON batching.

A page-level failure (HTTP error or malformed envelope on the member listing
or on the physical ``$batch`` call) aborts the whole fetch. A failed
sub-request inside a batch is recorded as a ``BatchFailure`` and the fetch
carries on.
"""
from __future__ import annotations
import logging
from typing import Iterable, Iterator

from ..exceptions import BatchItemError, ValidationError
from ..models import BatchFailure, BatchItem, BatchSuccess, DirectoryMember, is_success_status
from ..schemas import BatchResponse, parse_batch_response, parse_error_body, parse_member_page, parse_user
from .client import GraphClient

logger = logging.getLogger(__name__)

# Enforced by Microsoft: https://learn.microsoft.com/en-us/graph/json-batching
MAX_REQUESTS_PER_BATCH = 20
MAX_PAGE_SIZE = 999

USER_ODATA_TYPE = "#microsoft.graph.user"
USER_SELECT_FIELDS = "id,displayName,givenName,surname,mail"


def chunked(values: list[str], size: int) -> Iterator[list[str]]:
    """Split ``values`` into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for start in range(0, len(values), size):
        yield values[start:start + size]


def batch_item_from_response(response: BatchResponse) -> BatchItem:
    """Tag one sub-response as a success or a failure.

    A 2xx sub-response whose body is not a valid user record, or whose user
    id does not match the correlation id, becomes a failure.
    """
    try:
        return BatchSuccess(id=response.id, status=response.status, member=_member_from_response(response))
    except BatchItemError as exc:
        return BatchFailure(
            id=exc.item_id,
            status=exc.status,
            error_code=exc.error_code,
            error_message=exc.message,
        )


def _member_from_response(response: BatchResponse) -> DirectoryMember:
    if not is_success_status(response.status):
        code, message = parse_error_body(response.body)
        raise BatchItemError(response.id, response.status, code, message)
    try:
        member = parse_user(response.body)
    except ValidationError as exc:
        raise BatchItemError(response.id, response.status, "InvalidPayload", str(exc)) from exc
    if member.external_id != response.id:
        raise BatchItemError(
            response.id,
            response.status,
            "InvalidPayload",
            f"body id {member.external_id} does not match request id",
        )
    return member


class DirectoryBatchFetcher:
    """Fetch the full membership of a directory group as batch items.

    Usage:
        fetcher = DirectoryBatchFetcher(GraphClient())
        items = fetcher.fetch(group_id, token)
    """

    def __init__(
        self,
        client: GraphClient,
        batch_size: int = MAX_REQUESTS_PER_BATCH,
        page_size: int = MAX_PAGE_SIZE,
        transitive: bool = True,
    ):
        if not 1 <= batch_size <= MAX_REQUESTS_PER_BATCH:
            raise ValueError(f"batch_size must be between 1 and {MAX_REQUESTS_PER_BATCH}")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self.client = client
        self.batch_size = batch_size
        self.page_size = page_size
        self.transitive = transitive

    def fetch(self, group_id: str, token: str) -> list[BatchItem]:
        """Return one batch item per distinct user member of ``group_id``.

        Raises:
            GraphAPIError: If a page listing or a physical batch call fails
            ValidationError: If a page or batch envelope is malformed
        """
        relation = "transitiveMembers" if self.transitive else "members"
        logger.info(f"Fetching {relation} of group {group_id}")

        items: list[BatchItem] = []
        seen: set[str] = set()
        next_url: str | None = f"/groups/{group_id}/{relation}"
        params: dict | None = {"$select": "id", "$top": str(self.page_size)}
        pages = 0

        while next_url:
            page = parse_member_page(self.client.get_json(next_url, token, params=params))
            pages += 1
            member_ids = [member_id for member_id in self._user_ids(page.items) if member_id not in seen]
            seen.update(member_ids)
            logger.debug(f"Page {pages} of group {group_id}: {len(member_ids)} new user ids")

            for chunk in chunked(member_ids, self.batch_size):
                items.extend(self._fetch_batch(chunk, token))

            # nextLink already carries the query string
            next_url = page.next_link
            params = None

        failures = sum(1 for item in items if isinstance(item, BatchFailure))
        logger.info(
            f"Group {group_id}: {len(items)} members over {pages} page(s), {failures} unconfirmed"
        )
        return items

    def fetch_all(self, group_ids: Iterable[str], token: str) -> list[BatchItem]:
        """Fetch several groups and merge their items by correlation id.

        A success for an id wins over a failure for the same id reported by
        another group.
        """
        merged: dict[str, BatchItem] = {}
        for group_id in group_ids:
            for item in self.fetch(group_id, token):
                current = merged.get(item.id)
                if current is None or (isinstance(current, BatchFailure) and isinstance(item, BatchSuccess)):
                    merged[item.id] = item
        return list(merged.values())

    def _user_ids(self, entries: list[dict]) -> Iterator[str]:
        for index, entry in enumerate(entries):
            odata_type = entry.get("@odata.type")
            if odata_type is not None and odata_type != USER_ODATA_TYPE:
                logger.debug(f"Skipping non-user member {entry.get('id')} ({odata_type})")
                continue
            member_id = entry.get("id")
            if not isinstance(member_id, str) or not member_id:
                raise ValidationError(f"value[{index}].id", "expected non-empty str")
            yield member_id

    def _fetch_batch(self, member_ids: list[str], token: str) -> list[BatchItem]:
        payload = {
            "requests": [
                {
                    "id": member_id,
                    "method": "GET",
                    "url": f"/users/{member_id}?$select={USER_SELECT_FIELDS}",
                }
                for member_id in member_ids
            ]
        }
        responses = parse_batch_response(self.client.post_json("/$batch", token, json=payload))

        by_id: dict[str, BatchResponse] = {}
        for response in responses:
            if response.id not in member_ids:
                logger.warning(f"Ignoring batch response for unrequested id {response.id}")
                continue
            by_id.setdefault(response.id, response)

        items: list[BatchItem] = []
        for member_id in member_ids:
            response = by_id.get(member_id)
            if response is None:
                items.append(BatchFailure(
                    id=member_id,
                    status=0,
                    error_code="MissingResponse",
                    error_message="no sub-response returned for this id",
                ))
                continue
            items.append(batch_item_from_response(response))
        return items
