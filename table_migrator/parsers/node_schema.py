from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..utils.errors import ParseError

DEPRECATED_KIND = "customTable"
CANONICAL_KIND = "basicTable"


@dataclass(frozen=True)
class NodeLayout:
    """Key names used to read a persisted document tree."""

    kind_key: str = "kind"
    children_key: str = "children"
    attrs_key: str = "attrs"

    @property
    def marker(self) -> str:
        # The deprecated kind exactly as it appears in serialized JSON.
        return f'"{DEPRECATED_KIND}"'


KIND_LAYOUT = NodeLayout()
TIPTAP_LAYOUT = NodeLayout(kind_key="type", children_key="content")

LAYOUTS: Dict[str, NodeLayout] = {
    "kind": KIND_LAYOUT,
    "tiptap": TIPTAP_LAYOUT,
}


def get_layout(name: Optional[str]) -> NodeLayout:
    try:
        return LAYOUTS[name or "kind"]
    except KeyError:
        raise ValueError(f"Unknown document layout '{name}'. Expected one of {sorted(LAYOUTS)}") from None


# --- Accessors ---

def kind_of(node: Any, layout: NodeLayout = KIND_LAYOUT) -> Optional[str]:
    if isinstance(node, dict):
        kind = node.get(layout.kind_key)
        return kind if isinstance(kind, str) else None
    return None


def children_of(node: Any, layout: NodeLayout = KIND_LAYOUT) -> Optional[List[Any]]:
    if isinstance(node, dict):
        children = node.get(layout.children_key)
        if isinstance(children, list):
            return children
    return None


def is_deprecated_table(node: Any, layout: NodeLayout = KIND_LAYOUT) -> bool:
    return kind_of(node, layout) == DEPRECATED_KIND


def parse_content(raw: Any, layout: NodeLayout = KIND_LAYOUT) -> Dict[str, Any]:
    """
    Decode stored content into a document tree.  Stores may hand back JSON
    text or an already decoded object; either way the root must be a node.

    :raises ParseError: if the content is not a well-formed tree.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            tree = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"Content is not valid JSON: {e}") from e
    else:
        tree = raw
    if not isinstance(tree, dict):
        raise ParseError(f"Document root must be an object, got {type(tree).__name__}")
    if not isinstance(tree.get(layout.kind_key), str):
        raise ParseError(f"Document root has no '{layout.kind_key}'")
    children = tree.get(layout.children_key)
    if children is not None and not isinstance(children, list):
        raise ParseError(f"Document root '{layout.children_key}' must be a list")
    return tree


# --- Builders ---

def doc(children: Optional[List[Dict[str, Any]]] = None, layout: NodeLayout = KIND_LAYOUT) -> Dict[str, Any]:
    return {layout.kind_key: "doc", layout.children_key: children or []}


def custom_table(
    headers: Any = None,
    rows: Any = None,
    table_id: Optional[str] = None,
    layout: NodeLayout = KIND_LAYOUT,
    **extra_attrs: Any,
) -> Dict[str, Any]:
    attrs: Dict[str, Any] = dict(extra_attrs)
    if headers is not None:
        attrs["headers"] = headers
    if rows is not None:
        attrs["rows"] = rows
    if table_id is not None:
        attrs["tableId"] = table_id
    return {layout.kind_key: DEPRECATED_KIND, layout.attrs_key: attrs}


def basic_table(
    headers: List[str],
    rows: List[List[str]],
    table_id: str,
    layout: NodeLayout = KIND_LAYOUT,
) -> Dict[str, Any]:
    """
    Canonical text-only table node.  This is the persisted artifact other
    consumers read, so its shape is fixed:
    ``{kind, attrs: {tableData: {headers, rows, id}}}``.
    """
    return {
        layout.kind_key: CANONICAL_KIND,
        layout.attrs_key: {
            "tableData": {
                "headers": headers,
                "rows": rows,
                "id": table_id,
            }
        },
    }
