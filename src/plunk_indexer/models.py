"""Record shapes flowing through the migration."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


def to_epoch_ms(value: Any) -> int:
    """Convert a legacy timestamp (datetime, epoch ms or ISO string) to epoch ms.

    Naive datetimes are treated as UTC, which is how MongoDB returns them.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def to_iso(value: Any) -> Optional[str]:
    """Render a legacy timestamp as an ISO-8601 UTC string."""
    if value is None:
        return None
    ms = to_epoch_ms(value)
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ChangeKind(Enum):
    """What a single change delta does to the snapshot."""

    CREATE = "create"
    DELETE = "delete"
    RENAME = "rename"
    MODIFY = "modify"
    RENAME_AND_MODIFY = "rename_and_modify"
    NOOP = "noop"


@dataclass(frozen=True)
class ChangeDelta:
    """One atomic edit within a revision.

    Legacy deltas only say which of ``fn`` (from), ``pn`` (to) and ``pl``
    (patch text, or content for creations) are present; the kind is decided
    once here instead of re-inspecting the optional fields while replaying.
    """

    kind: ChangeKind
    from_path: Optional[str] = None
    to_path: Optional[str] = None
    patch: Optional[str] = None

    @classmethod
    def from_legacy(cls, change: Mapping[str, Any]) -> "ChangeDelta":
        from_path = change.get("fn") or None
        to_path = change.get("pn") or None
        patch = change.get("pl") or None

        if to_path is None:
            if from_path is None:
                return cls(ChangeKind.NOOP)
            return cls(ChangeKind.DELETE, from_path=from_path)
        if from_path is None:
            return cls(ChangeKind.CREATE, to_path=to_path, patch=patch)
        if from_path != to_path:
            kind = ChangeKind.RENAME_AND_MODIFY if patch else ChangeKind.RENAME
            return cls(kind, from_path=from_path, to_path=to_path, patch=patch)
        if patch:
            return cls(ChangeKind.MODIFY, from_path=from_path, to_path=to_path, patch=patch)
        return cls(ChangeKind.NOOP, from_path=from_path, to_path=to_path)


@dataclass(frozen=True)
class Revision:
    """Ordered deltas recorded for one save of a plunk."""

    changes: List[ChangeDelta] = field(default_factory=list)

    @classmethod
    def from_legacy(cls, revision: Mapping[str, Any]) -> "Revision":
        return cls(
            changes=[
                ChangeDelta.from_legacy(change)
                for change in (revision.get("changes") or [])
            ]
        )


@dataclass
class FileEntry:
    """A file in a working snapshot."""

    path: str
    content: str = ""


@dataclass
class LegacyRecord:
    """Typed view of a document from the legacy plunk collection.

    ``history`` keeps the stored newest-first order.
    """

    id: str
    user: Optional[str] = None
    description: str = ""
    tags: List[str] = field(default_factory=list)
    created_at: Any = None
    updated_at: Any = None
    private: bool = False
    fork_of: Optional[str] = None
    forks: List[Any] = field(default_factory=list)
    views: int = 0
    thumbs: int = 0
    files: List[FileEntry] = field(default_factory=list)
    history: List[Revision] = field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "LegacyRecord":
        """Build a record from a raw MongoDB document."""
        record_id = doc.get("_id", doc.get("id"))
        if record_id is None:
            raise ValueError("Legacy document has no _id")

        return cls(
            id=str(record_id),
            user=doc.get("user") or None,
            description=doc.get("description") or "",
            tags=list(doc.get("tags") or []),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
            private=bool(doc.get("private", False)),
            fork_of=doc.get("fork_of") or None,
            forks=list(doc.get("forks") or []),
            views=_as_int(doc.get("views")),
            thumbs=_as_int(doc.get("thumbs")),
            files=[
                FileEntry(path=f["filename"], content=f.get("content") or "")
                for f in (doc.get("files") or [])
                if f.get("filename")
            ],
            history=[Revision.from_legacy(rev) for rev in (doc.get("history") or [])],
        )

    @property
    def updated_at_ms(self) -> int:
        return to_epoch_ms(self.updated_at)


def _as_int(value: Any) -> int:
    """parseInt-style coercion for counters stored as strings or numbers."""
    if value is None:
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.debug(f"Non-numeric counter value {value!r}, using 0")
        return 0


@dataclass(frozen=True)
class PackageReference:
    """A package declared by a ``data-require``/``data-semver`` pair."""

    name: str
    semver: str
    semver_range: str = "*"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class MigratedRecord:
    """Document written to the destination index for one plunk."""

    id: str
    title: str
    readme: str
    tags: List[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    viewed_at: Optional[str]
    user_id: Optional[str]
    packages: List[PackageReference]
    commit_sha: str
    tree_sha: str
    forks_count: int
    revisions_count: int
    views_count: int
    likes_count: int
    fork_of: Optional[str] = None
    deleted_at: Optional[str] = None
    session_id: Optional[str] = None
    comments_count: int = 0
    favorites_count: int = 0
    collections: List[str] = field(default_factory=list)
    queued: List[str] = field(default_factory=list)
    # Not indexed: only used to advance the resume watermark
    updated_at_ms: int = 0

    def to_document(self) -> Dict[str, Any]:
        """Convert to the JSON document stored in the index."""
        data = asdict(self)
        data.pop("updated_at_ms")
        data["packages"] = [package.to_dict() for package in self.packages]
        return data
