"""Hierarchical path labels for ancestor/descendant queries.

Every message carries a dot-separated path of encoded ids from the root down
to itself, e.g. ``3f2a_..._91.7c1e_..._04``. Segments may only contain
letters, digits and underscores, so the hyphens of a UUID are written as
underscores. To keep that substitution reversible, identifiers themselves
must not contain underscores (or anything besides letters, digits and
hyphens).
"""

import re

from .errors import InvalidIdentifierError

SEPARATOR = "."

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def encode_segment(identifier: str) -> str:
    """Encode an identifier as a path segment.

    Args:
        identifier: Message id (letters, digits and hyphens only)

    Returns:
        The id with every hyphen replaced by an underscore

    Raises:
        InvalidIdentifierError: If the id is empty or uses other characters
    """
    if not _IDENTIFIER_PATTERN.match(identifier):
        raise InvalidIdentifierError(
            f"Identifier {identifier!r} cannot be encoded as a path segment; "
            "only letters, digits and '-' are supported"
        )
    return identifier.replace("-", "_")


def decode_segment(segment: str) -> str:
    """Recover the identifier an ``encode_segment`` call produced."""
    if not _SEGMENT_PATTERN.match(segment):
        raise InvalidIdentifierError(f"Invalid path segment: {segment!r}")
    return segment.replace("_", "-")


def build_path(parent_path: str | None, identifier: str) -> str:
    """Build the path of a node from its parent's path.

    Args:
        parent_path: Path of the parent, or None for a root
        identifier: Id of the node

    Returns:
        The node's path
    """
    segment = encode_segment(identifier)
    if parent_path is None:
        return segment
    return f"{parent_path}{SEPARATOR}{segment}"


def split_path(path: str) -> list[str]:
    """Split a path into its encoded segments."""
    if not path:
        return []
    return path.split(SEPARATOR)


def depth(path: str) -> int:
    """Number of components in a path (a root path has one)."""
    return len(split_path(path))


def path_ids(path: str) -> list[str]:
    """Decoded ids along a path, root first."""
    return [decode_segment(segment) for segment in split_path(path)]


def is_ancestor(path_a: str, path_b: str, inclusive: bool = False) -> bool:
    """Check whether the node at ``path_a`` is an ancestor of ``path_b``.

    The comparison is done per component, so ``ab`` is not an ancestor of
    ``abc`` even though the strings share a prefix.

    Args:
        path_a: Candidate ancestor path
        path_b: Candidate descendant path
        inclusive: Treat equal paths as ancestors (for subtree queries)

    Returns:
        True if path_a's components are a prefix of path_b's
    """
    components_a = split_path(path_a)
    components_b = split_path(path_b)

    if not components_a:
        return False
    if len(components_a) > len(components_b):
        return False
    if len(components_a) == len(components_b) and not inclusive:
        return False

    return components_b[: len(components_a)] == components_a
