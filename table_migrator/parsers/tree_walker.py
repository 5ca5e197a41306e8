"""
Traversal of persisted document trees.

:func:`migrate_tree` replaces every ``customTable`` node of a tree with its
``basicTable`` equivalent in a single depth-first, pre-order pass.  It uses
an explicit stack so that very deep documents cannot hit the interpreter's
recursion limit.

Trees are treated as immutable: only the nodes on the path from a converted
table up to the root are rebuilt (shallow copies with a new children list).
Every untouched subtree is shared with the input, and a tree without any
deprecated node is returned as the very same object.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..models import BasicTableData
from ..utils.errors import ValidationError
from .node_schema import CANONICAL_KIND, DEPRECATED_KIND, KIND_LAYOUT, NodeLayout, children_of, is_deprecated_table, kind_of
from .table_converter import IdFactory, TableIdFactory, convert_table


class _Frame:
    __slots__ = ("node", "children", "index", "new_children", "changed")

    def __init__(self, node: Dict[str, Any], children: List[Any]) -> None:
        self.node = node
        self.children = children
        self.index = 0
        self.new_children: List[Any] = []
        self.changed = False

    def add(self, child: Any, changed: bool) -> None:
        self.new_children.append(child)
        self.changed = self.changed or changed

    def finish(self, layout: NodeLayout) -> Dict[str, Any]:
        if not self.changed:
            return self.node
        rebuilt = dict(self.node)
        rebuilt[layout.children_key] = self.new_children
        return rebuilt


def migrate_tree(
    tree: Any,
    id_factory: Optional[IdFactory] = None,
    *,
    layout: NodeLayout = KIND_LAYOUT,
    strip_html: bool = False,
) -> Tuple[Any, bool]:
    """
    Convert all deprecated tables in ``tree``.

    Children of a converted table are not visited: the converter has already
    taken everything it keeps from the legacy node.

    :return: ``(new_tree, changed)``.  When ``changed`` is ``False`` the
        returned tree is ``tree`` itself.
    """
    if id_factory is None:
        id_factory = TableIdFactory()

    def convert(node: Dict[str, Any]) -> Dict[str, Any]:
        return convert_table(node, id_factory, layout=layout, strip_html=strip_html)

    if is_deprecated_table(tree, layout):
        return convert(tree), True
    root_children = children_of(tree, layout)
    if root_children is None:
        return tree, False

    stack: List[_Frame] = [_Frame(tree, root_children)]
    while True:
        frame = stack[-1]
        if frame.index < len(frame.children):
            child = frame.children[frame.index]
            frame.index += 1
            if is_deprecated_table(child, layout):
                frame.add(convert(child), True)
                continue
            grandchildren = children_of(child, layout)
            if grandchildren is None:
                frame.add(child, False)
            else:
                stack.append(_Frame(child, grandchildren))
            continue

        stack.pop()
        rebuilt = frame.finish(layout)
        if not stack:
            return rebuilt, frame.changed
        stack[-1].add(rebuilt, frame.changed)


def count_nodes(tree: Any, kind: str, *, layout: NodeLayout = KIND_LAYOUT) -> int:
    count = 0
    pending = [tree]
    while pending:
        node = pending.pop()
        if kind_of(node, layout) == kind:
            count += 1
        children = children_of(node, layout)
        if children:
            pending.extend(children)
    return count


def validate_migration(original: Any, migrated: Any, *, layout: NodeLayout = KIND_LAYOUT) -> int:
    """
    Check a migrated tree against its original.

    No ``customTable`` may remain, and the number of ``basicTable`` nodes must
    have grown by exactly the number of tables that were converted.  Nested
    legacy tables inside a converted table are dropped with it, so only the
    outermost ones count.

    :return: The number of tables converted.
    :raises ValidationError: if a check fails, including a converted table
        whose ``tableData`` does not have the canonical shape.
    """
    remaining = count_nodes(migrated, DEPRECATED_KIND, layout=layout)
    if remaining:
        raise ValidationError(f"{remaining} customTable nodes still present after migration")
    converted = _count_outermost_deprecated(original, layout)
    before = count_nodes(original, CANONICAL_KIND, layout=layout)
    after = count_nodes(migrated, CANONICAL_KIND, layout=layout)
    # basicTable nodes nested inside a converted legacy table disappear with it.
    lost = _count_canonical_inside_deprecated(original, layout)
    if after != before - lost + converted:
        raise ValidationError(
            f"Node count mismatch: {converted} tables converted but basicTable count went from {before} to {after}"
        )
    # Untouched subtrees are shared with the original, so new tables are the
    # basicTable nodes that did not exist there.
    existing = {id(node) for node in _canonical_nodes(original, layout)}
    for node in _canonical_nodes(migrated, layout):
        if id(node) in existing:
            continue
        attrs = node.get(layout.attrs_key)
        table_data = attrs.get("tableData") if isinstance(attrs, dict) else None
        try:
            BasicTableData.model_validate(table_data)
        except PydanticValidationError as e:
            raise ValidationError(f"Converted table has a malformed tableData: {e}") from e
    return converted


def _canonical_nodes(tree: Any, layout: NodeLayout) -> List[Dict[str, Any]]:
    found = []
    pending = [tree]
    while pending:
        node = pending.pop()
        if kind_of(node, layout) == CANONICAL_KIND:
            found.append(node)
        children = children_of(node, layout)
        if children:
            pending.extend(children)
    return found


def _count_outermost_deprecated(tree: Any, layout: NodeLayout) -> int:
    count = 0
    pending = [tree]
    while pending:
        node = pending.pop()
        if is_deprecated_table(node, layout):
            count += 1
            continue
        children = children_of(node, layout)
        if children:
            pending.extend(children)
    return count


def _count_canonical_inside_deprecated(tree: Any, layout: NodeLayout) -> int:
    count = 0
    pending = [tree]
    while pending:
        node = pending.pop()
        if is_deprecated_table(node, layout):
            count += count_nodes(node, CANONICAL_KIND, layout=layout)
            continue
        children = children_of(node, layout)
        if children:
            pending.extend(children)
    return count
