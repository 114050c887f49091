"""
Materialized path codec.

A path lists the ids of every ancestor followed by the node's own id, each
terminated by the separator: a root with id 1 has path "1.", its child 2 has
"1.2.". The trailing separator makes prefix tests safe ("1." never prefixes
"11.").

All functions are pure; nothing here touches the database.
"""

from typing import List, Optional

SEPARATOR = "."


class InvalidPathError(ValueError):
    """Raised for malformed paths or ids that cannot be encoded."""


def encode_segment(node_id: int) -> str:
    """Encode one id; the separator can never appear inside a segment."""
    if isinstance(node_id, bool) or not isinstance(node_id, int):
        raise InvalidPathError(f"Node id must be an integer, got {node_id!r}")
    if node_id < 0:
        raise InvalidPathError(f"Node id must be non-negative, got {node_id}")
    return str(node_id)


def root_path(node_id: int) -> str:
    """Path of a node without parent."""
    return encode_segment(node_id) + SEPARATOR


def child_path(parent_path: str, child_id: int) -> str:
    """Path of a child given its parent's current path."""
    validate_path(parent_path)
    return parent_path + encode_segment(child_id) + SEPARATOR


def parse_path(path: str) -> List[int]:
    """
    Decode a path into its ordered ids, root first.

    Raises:
        InvalidPathError: empty path, missing trailing separator or a
            non-numeric segment.
    """
    if not path or not path.endswith(SEPARATOR):
        raise InvalidPathError(f"Path must end with '{SEPARATOR}': {path!r}")
    segments = path[:-1].split(SEPARATOR)
    ids = []
    for segment in segments:
        if not (segment.isascii() and segment.isdigit()):
            raise InvalidPathError(f"Invalid path segment {segment!r} in {path!r}")
        ids.append(int(segment))
    return ids


def validate_path(path: str) -> str:
    parse_path(path)
    return path


def depth(path: str) -> int:
    """Number of nodes on the path; a root has depth 1."""
    return len(parse_path(path))


def node_id_of(path: str) -> int:
    return parse_path(path)[-1]


def ancestor_ids(path: str) -> List[int]:
    """Ids of the strict ancestors, root first."""
    return parse_path(path)[:-1]


def parent_path(path: str) -> Optional[str]:
    """Path of the parent, or None for a root path."""
    ids = ancestor_ids(path)
    if not ids:
        return None
    return SEPARATOR.join(str(i) for i in ids) + SEPARATOR


def is_descendant_or_self(ancestor_path: str, candidate_path: str) -> bool:
    """True iff candidate_path lies in the subtree rooted at ancestor_path."""
    return candidate_path.startswith(ancestor_path)


def is_strict_ancestor(path: str, candidate_path: str) -> bool:
    """
    True iff candidate_path is a proper prefix of path.

    In other words the node at candidate_path sits strictly above the node at
    path. A path is never a strict ancestor of itself.
    """
    return len(candidate_path) < len(path) and path.startswith(candidate_path)


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> str:
    """
    Move a path from one subtree root to another.

    rebase_path("1.2.5.9.", "1.2.5.", "1.3.5.") == "1.3.5.9."
    """
    if not is_descendant_or_self(old_prefix, path):
        raise InvalidPathError(f"{path!r} is not under {old_prefix!r}")
    return new_prefix + path[len(old_prefix):]
