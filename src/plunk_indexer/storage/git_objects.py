"""Content-addressed blob/tree/commit construction.

Objects are plain dulwich objects, so every identity is a real git object id:
the same file set always hashes to the same tree no matter which record or run
produced it. Commits use a fixed epoch timestamp so a commit's identity depends
only on its tree, message, author and parents.
"""

import stat
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from dulwich.objects import Blob, Commit, ShaFile, Tree

from ..errors import TreeConflictError

FILE_MODE = stat.S_IFREG | 0o644
DIRECTORY_MODE = stat.S_IFDIR

ANONYMOUS_AUTHOR = "anonymous"


def _encode(text: Optional[str]) -> bytes:
    return (text or "").encode("utf-8")


def _split_path(path: str) -> List[str]:
    """Split a snapshot path into tree segments, ignoring leading/duplicate slashes."""
    return [segment for segment in path.split("/") if segment]


@dataclass(frozen=True)
class MaterializedTree:
    """Root tree plus every object it references.

    Attributes:
        tree: Root dulwich Tree
        objects: All subtrees and blobs keyed by hex id (root included)
        files: Flat path -> content view of the tree
    """

    tree: Tree
    objects: Dict[str, ShaFile] = field(repr=False)
    files: Dict[str, str] = field(repr=False)

    @property
    def id(self) -> str:
        return self.tree.id.decode("ascii")

    def walk(self) -> Iterator[Tuple[str, str]]:
        """Yield (path, content) pairs in path order."""
        for path in sorted(self.files):
            yield path, self.files[path]


@dataclass(frozen=True)
class MaterializedCommit:
    """Commit object together with its materialized tree."""

    commit: Commit
    tree: MaterializedTree
    parents: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.commit.id.decode("ascii")

    @property
    def tree_id(self) -> str:
        return self.tree.id

    @property
    def message(self) -> str:
        return self.commit.message.decode("utf-8")

    def objects(self) -> Iterator[Tuple[str, ShaFile]]:
        """Yield (id, object) for the commit and everything it references."""
        yield self.id, self.commit
        yield from self.tree.objects.items()


def blob_of(content: Optional[str]) -> Blob:
    """Create the blob for a file's content."""
    return Blob.from_string(_encode(content))


def tree_of(files: Mapping[str, Optional[str]]) -> MaterializedTree:
    """Build the tree for a path -> content mapping.

    Paths containing ``/`` become nested subtrees. Paths are normalized and
    placed in sorted order, so insertion order never affects the identity.

    Raises:
        TreeConflictError: If two paths normalize to the same entry, or a path
            is both a file and a directory
    """
    objects: Dict[str, ShaFile] = {}
    flat = _normalize_paths(files)
    nested: Dict[str, object] = {}

    for path in sorted(flat):
        segments = path.split("/")
        node = nested
        for depth, segment in enumerate(segments[:-1], start=1):
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise TreeConflictError(
                    f"{'/'.join(segments[:depth])!r} is both a file and a "
                    f"directory (needed by {path!r})",
                    path=path,
                )
            node = child
        if segments[-1] in node:
            raise TreeConflictError(
                f"{path!r} is both a file and a directory", path=path
            )
        node[segments[-1]] = flat[path]

    root = _build_tree(nested, objects)
    return MaterializedTree(tree=root, objects=objects, files=flat)


def _normalize_paths(files: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Map each path to its slash-normalized form, refusing aliases."""
    normalized: Dict[str, str] = {}
    spelled: Dict[str, str] = {}
    for path, content in files.items():
        segments = _split_path(path)
        if not segments:
            continue
        key = "/".join(segments)
        if key in normalized:
            first, second = sorted((spelled[key], path))
            raise TreeConflictError(
                f"Paths {first!r} and {second!r} both name {key!r}", path=key
            )
        normalized[key] = content or ""
        spelled[key] = path
    return normalized


def _build_tree(node: Mapping[str, object], objects: Dict[str, ShaFile]) -> Tree:
    tree = Tree()
    for name, value in node.items():
        if isinstance(value, dict):
            subtree = _build_tree(value, objects)
            tree.add(name.encode("utf-8"), DIRECTORY_MODE, subtree.id)
        else:
            blob = blob_of(value)  # type: ignore[arg-type]
            objects[blob.id.decode("ascii")] = blob
            tree.add(name.encode("utf-8"), FILE_MODE, blob.id)
    objects[tree.id.decode("ascii")] = tree
    return tree


def author_identity(user: Optional[str], domain: str) -> str:
    """Build a git author line for a legacy user name."""
    name = (user or "").strip() or ANONYMOUS_AUTHOR
    return f"{name} <{name}@{domain}>"


def commit_of(
    tree: MaterializedTree,
    message: str,
    author: str,
    parents: Sequence[str] = (),
) -> MaterializedCommit:
    """Create a commit pointing at ``tree``.

    Args:
        tree: Materialized tree for the snapshot
        message: Commit message
        author: Author line, also used as committer
        parents: Parent commit ids (at most one for linear histories)

    Returns:
        MaterializedCommit whose id is a pure function of the arguments
    """
    commit = Commit()
    commit.tree = tree.tree.id
    commit.parents = [parent.encode("ascii") for parent in parents]
    commit.author = commit.committer = author.encode("utf-8")
    commit.author_time = commit.commit_time = 0
    commit.author_timezone = commit.commit_timezone = 0
    commit.encoding = b"UTF-8"
    commit.message = message.encode("utf-8")
    return MaterializedCommit(commit=commit, tree=tree, parents=tuple(parents))


def object_from_raw(type_num: int, data: bytes) -> ShaFile:
    """Rebuild a dulwich object from its stored type number and raw body."""
    return ShaFile.from_raw_string(type_num, data)
