"""Value types shared by the fetcher, reconciler and sync service."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional, Union


@dataclass(frozen=True)
class DirectoryMember:
    """A user object as returned by Microsoft Graph.

    Identity is ``external_id`` (the Entra object id); every other field
    is descriptive and may be missing.
    """
    external_id: str
    display_name: Optional[str] = None
    given_name: Optional[str] = None
    surname: Optional[str] = None
    mail: Optional[str] = None


@dataclass(frozen=True)
class BatchSuccess:
    """Sub-response with a 2xx status and a valid user body."""
    id: str
    status: int
    member: DirectoryMember


@dataclass(frozen=True)
class BatchFailure:
    """Sub-response that could not be confirmed."""
    id: str
    status: int
    error_code: str
    error_message: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


BatchItem = Union[BatchSuccess, BatchFailure]


def is_success_status(status: int) -> bool:
    return 200 <= status <= 299


class MembershipSet:
    """Immutable set of external ids confirmed as group members.

    Also keeps the member payload for each id so that missing local rows
    can be created with descriptive fields.
    """

    __slots__ = ("_members",)

    def __init__(self, members: Iterable[DirectoryMember] = ()):
        collected: dict[str, DirectoryMember] = {}
        for member in members:
            collected.setdefault(member.external_id, member)
        self._members: Mapping[str, DirectoryMember] = collected

    @classmethod
    def from_items(cls, items: Iterable[BatchItem]) -> "MembershipSet":
        """Build the set from fetched batch items, dropping failures."""
        members = []
        for item in items:
            if isinstance(item, BatchSuccess):
                members.append(item.member)
            elif isinstance(item, BatchFailure):
                continue
            else:
                raise TypeError(f"Unexpected batch item type: {type(item).__name__}")
        return cls(members)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._members)

    def members(self) -> list[DirectoryMember]:
        """Members in first-seen order."""
        return list(self._members.values())

    def get(self, external_id: str) -> Optional[DirectoryMember]:
        return self._members.get(external_id)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MembershipSet):
            return NotImplemented
        return self.ids == other.ids

    def __hash__(self) -> int:
        return hash(self.ids)

    def __repr__(self) -> str:
        return f"MembershipSet({sorted(self._members)!r})"


@dataclass
class LocalUserRecord:
    """One row of the local ``user`` table."""
    id: int
    external_id: Optional[str]
    role_group_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    business_email: Optional[str] = None
    language_id: Optional[int] = None
    created_by: Optional[str] = None


@dataclass
class ReconcileResult:
    """External ids touched by each reconciliation phase."""
    demoted: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.demoted or self.promoted or self.created)


@dataclass
class SyncReport:
    """Authoritative record of what one run changed (or would change)."""
    created: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    demoted: list[str] = field(default_factory=list)
    unconfirmed: list[BatchFailure] = field(default_factory=list)
    member_count: int = 0
    group_ids: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.created or self.promoted or self.demoted)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "group_ids": list(self.group_ids),
            "member_count": self.member_count,
            "created": list(self.created),
            "promoted": list(self.promoted),
            "demoted": list(self.demoted),
            "unconfirmed": [failure.to_dict() for failure in self.unconfirmed],
            "counts": {
                "created": len(self.created),
                "promoted": len(self.promoted),
                "demoted": len(self.demoted),
                "unconfirmed": len(self.unconfirmed),
            },
        }
