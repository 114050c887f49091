"""
Materialized-path directory tree.
"""

from orgdir.kernel.directory.paths import (
    InvalidPathError,
    child_path,
    is_descendant_or_self,
    is_strict_ancestor,
    root_path,
)
from orgdir.kernel.directory.directory_store import (
    DirectoryStore,
    PathViolation,
    TreeNode,
)

__all__ = [
    "InvalidPathError",
    "child_path",
    "is_descendant_or_self",
    "is_strict_ancestor",
    "root_path",
    "DirectoryStore",
    "PathViolation",
    "TreeNode",
]
