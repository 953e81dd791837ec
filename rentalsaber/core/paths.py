# rentalsaber/core/paths.py
"""
Read and write single parameters of a ProjectInputs tree by string path.

Path grammar (parsed once per distinct path):
    path    := segment ('.' segment)*
    segment := name ('[' index ']')?
e.g. "financing.purchase_price" or "expenses[2].amount".

Writes are copy-on-write: only the nodes between the root and the target
leaf are rebuilt, every other subtree is shared with the input tree.
"""

import re
import logging
from dataclasses import dataclass, fields, is_dataclass, replace
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from .inputs import InputWithSource, ProjectInputs, effective_value

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(?:\[(\d+)\])?$")


class PathError(KeyError):
    """A path is malformed or does not lead to a numeric leaf."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")

    def __str__(self) -> str:
        return f"Invalid parameter path '{self.path}': {self.reason}"


@dataclass(frozen=True)
class PathSegment:
    name: str
    index: Optional[int] = None

    def __str__(self) -> str:
        return self.name if self.index is None else f"{self.name}[{self.index}]"


@lru_cache(maxsize=512)
def parse_path(path: str) -> Tuple[PathSegment, ...]:
    """
    Parses a dotted path into segments.

    Raises:
        PathError: if the path is empty or a segment does not match the grammar.
    """
    if not path:
        raise PathError(path, "empty path")
    segments = []
    for part in path.split("."):
        match = _SEGMENT_RE.match(part)
        if match is None:
            raise PathError(path, f"malformed segment '{part}'")
        name, index = match.groups()
        segments.append(PathSegment(name, int(index) if index is not None else None))
    return tuple(segments)


def _is_number(node: Any) -> bool:
    return isinstance(node, (int, float)) and not isinstance(node, bool)


def _field_names(node: Any) -> Tuple[str, ...]:
    return tuple(f.name for f in fields(node))


def _child(node: Any, segment: PathSegment, path: str) -> Any:
    """Steps from a record node into one segment. Raises PathError on any shape mismatch."""
    if isinstance(node, InputWithSource) or not is_dataclass(node):
        raise PathError(path, f"cannot descend into leaf at '{segment}'")
    if segment.name not in _field_names(node):
        raise PathError(path, f"no field '{segment.name}' on {type(node).__name__}")
    child = getattr(node, segment.name)
    if segment.index is None:
        if child is None:
            raise PathError(path, f"'{segment.name}' is not set")
        return child
    if not isinstance(child, tuple):
        raise PathError(path, f"'{segment.name}' is not a list")
    if segment.index >= len(child):
        raise PathError(path, f"index {segment.index} out of range for '{segment.name}' (length {len(child)})")
    return child[segment.index]


def _resolve(inputs: ProjectInputs, path: str) -> Any:
    node: Any = inputs
    for segment in parse_path(path):
        node = _child(node, segment, path)
    return node


def get_value_by_path(inputs: ProjectInputs, path: str, strict: bool = False) -> float:
    """
    Returns the effective value of the leaf at path.

    Args:
        inputs: The parameter tree.
        path: Dotted path to a numeric leaf.
        strict: When True a missing or wrong-shaped path raises PathError.
                When False (default) it logs a warning and returns 0.0.

    Returns:
        range.default for a range-enabled leaf, the scalar value otherwise.
    """
    try:
        node = _resolve(inputs, path)
        if not (isinstance(node, InputWithSource) or _is_number(node)):
            raise PathError(path, f"leaf is not numeric ({type(node).__name__})")
    except PathError:
        if strict:
            raise
        logger.warning(f"Path '{path}' does not resolve to a numeric leaf. Falling back to 0.")
        return 0.0
    return float(effective_value(node))


def _write_leaf(leaf: Any, value: float, path: str) -> Any:
    if isinstance(leaf, InputWithSource):
        # Preserve the leaf's mode: an enabled range receives the write in its default.
        if leaf.range is not None and leaf.range.use_range:
            return replace(leaf, range=replace(leaf.range, default=value))
        return replace(leaf, value=value)
    if _is_number(leaf):
        return value
    raise PathError(path, f"leaf is not numeric ({type(leaf).__name__})")


def _set(node: Any, segments: Tuple[PathSegment, ...], value: float, path: str) -> Any:
    segment, rest = segments[0], segments[1:]
    target = _child(node, segment, path)
    new_target = _set(target, rest, value, path) if rest else _write_leaf(target, value, path)

    if segment.index is None:
        return replace(node, **{segment.name: new_target})
    items = getattr(node, segment.name)
    new_items = items[:segment.index] + (new_target,) + items[segment.index + 1:]
    return replace(node, **{segment.name: new_items})


def set_value_by_path(inputs: ProjectInputs, path: str, value: float) -> ProjectInputs:
    """
    Returns a new tree with the leaf at path set to value.

    The write lands in range.default when the leaf's range is enabled and in
    value otherwise, so callers never need to inspect the leaf first.
    The input tree is left untouched.

    Raises:
        PathError: if any segment is missing, wrong-shaped or out of range.
    """
    return _set(inputs, parse_path(path), float(value), path)


def apply_values(inputs: ProjectInputs, values: Dict[str, float]) -> ProjectInputs:
    """Applies several path writes in order and returns the resulting tree."""
    for path, value in values.items():
        inputs = set_value_by_path(inputs, path, value)
    return inputs
