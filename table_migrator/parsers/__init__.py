"""
Pure tree transformations used by the migration pipeline.

This subpackage exposes the cell normalizer, the single-table converter and
the tree walker.  Nothing here performs I/O; every function returns new
values and leaves its input untouched, so the same tree can be previewed and
then committed.
"""

from .cells import normalize_cell, normalize_header
from .node_schema import CANONICAL_KIND, DEPRECATED_KIND, KIND_LAYOUT, TIPTAP_LAYOUT, NodeLayout, get_layout, parse_content
from .table_converter import TableIdFactory, convert_table
from .tree_walker import count_nodes, migrate_tree, validate_migration

__all__ = [
    "CANONICAL_KIND",
    "DEPRECATED_KIND",
    "KIND_LAYOUT",
    "TIPTAP_LAYOUT",
    "NodeLayout",
    "TableIdFactory",
    "convert_table",
    "count_nodes",
    "get_layout",
    "migrate_tree",
    "normalize_cell",
    "normalize_header",
    "parse_content",
    "validate_migration",
]
