import copy
import json
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from table_migrator.parsers.node_schema import TIPTAP_LAYOUT, custom_table, doc, parse_content
from table_migrator.parsers.table_converter import TableIdFactory
from table_migrator.parsers.tree_walker import count_nodes, migrate_tree, validate_migration
from table_migrator.utils.errors import ParseError, ValidationError


def paragraph(text):
    return {"kind": "paragraph", "children": [{"kind": "text", "attrs": {"text": text}}]}


def test_sample_document_migrates(sample_doc, expected_sample_doc):
    result, changed = migrate_tree(sample_doc)
    assert changed is True
    assert result == expected_sample_doc
    assert json.loads(json.dumps(result)) == expected_sample_doc


def test_tree_without_tables_is_returned_as_is():
    tree = doc([paragraph("a"), {"kind": "bulletList", "children": [paragraph("b")]}])
    before = copy.deepcopy(tree)
    result, changed = migrate_tree(tree)
    assert changed is False
    assert result is tree
    assert tree == before


def test_already_canonical_tree_is_idempotent(sample_doc):
    migrated, _ = migrate_tree(sample_doc)
    again, changed = migrate_tree(migrated)
    assert changed is False
    assert again is migrated


def test_empty_tree_and_leaves():
    empty = doc([])
    assert migrate_tree(empty) == (empty, False)
    leaf = {"kind": "text"}
    assert migrate_tree(leaf) == (leaf, False)
    assert migrate_tree("not a node") == ("not a node", False)


def test_root_can_be_the_deprecated_node():
    result, changed = migrate_tree(custom_table(["H"], [["c"]], table_id="root"))
    assert changed is True
    assert result["kind"] == "basicTable"
    assert result["attrs"]["tableData"]["id"] == "root"


def test_untouched_siblings_are_shared_and_order_kept():
    p1, p2 = paragraph("before"), paragraph("after")
    nested = {"kind": "blockquote", "children": [paragraph("quoted")]}
    tree = doc([p1, custom_table(["H"], [["c"]], table_id="t"), nested, p2])
    result, changed = migrate_tree(tree)
    assert changed is True
    kids = result["children"]
    assert [k["kind"] for k in kids] == ["paragraph", "basicTable", "blockquote", "paragraph"]
    assert kids[0] is p1
    assert kids[2] is nested
    assert kids[3] is p2
    # the input tree itself is left alone
    assert tree["children"][1]["kind"] == "customTable"


def test_multiple_tables_at_several_depths_convert_in_one_pass():
    inner = {"kind": "column", "children": [custom_table(["x"], [["1"]]), paragraph("keep")]}
    tree = doc([custom_table(["a"], []), {"kind": "columns", "children": [inner]}, custom_table([], [["z"]])])
    result, changed = migrate_tree(tree, TableIdFactory())
    assert changed is True
    assert count_nodes(result, "customTable") == 0
    assert count_nodes(result, "basicTable") == 3
    ids = [n["attrs"]["tableData"]["id"] for n in _all_nodes(result) if n.get("kind") == "basicTable"]
    assert len(set(ids)) == 3
    new_inner = result["children"][1]["children"][0]
    assert new_inner is not inner
    assert new_inner["children"][1] is inner["children"][1]


def test_children_of_converted_table_are_not_visited():
    table = custom_table(["h"], [["c"]], table_id="outer")
    table["children"] = [custom_table(["nested"], [], table_id="nested")]
    result, _ = migrate_tree(doc([table]))
    converted = result["children"][0]
    assert "children" not in converted
    assert count_nodes(result, "basicTable") == 1


def test_non_node_children_pass_through():
    tree = doc(["raw text", 3, None, custom_table([], [], table_id="t")])
    result, changed = migrate_tree(tree)
    assert changed is True
    assert result["children"][:3] == ["raw text", 3, None]


def test_very_deep_tree_does_not_overflow():
    depth = 20000
    tree = custom_table(["deep"], [], table_id="bottom")
    for _ in range(depth):
        tree = {"kind": "section", "children": [tree]}
    result, changed = migrate_tree(tree)
    assert changed is True
    node = result
    for _ in range(depth):
        node = node["children"][0]
    assert node["kind"] == "basicTable"
    assert node["attrs"]["tableData"]["id"] == "bottom"
    assert count_nodes(result, "basicTable") == 1


def test_tiptap_layout():
    tree = {"type": "doc", "content": [{"type": "paragraph", "content": []}, {"type": "customTable", "attrs": {"headers": ["h"], "rows": [["r"]], "tableId": "tt"}}]}
    result, changed = migrate_tree(tree, layout=TIPTAP_LAYOUT)
    assert changed is True
    assert result["content"][1] == {"type": "basicTable", "attrs": {"tableData": {"headers": ["h"], "rows": [["r"]], "id": "tt"}}}
    assert count_nodes(tree, "customTable", layout=TIPTAP_LAYOUT) == 1
    assert count_nodes(result, "customTable", layout=TIPTAP_LAYOUT) == 0


def test_validate_migration_counts_converted_tables(sample_doc):
    migrated, _ = migrate_tree(sample_doc)
    assert validate_migration(sample_doc, migrated) == 1


def test_validate_migration_rejects_leftover_tables(sample_doc):
    with pytest.raises(ValidationError):
        validate_migration(sample_doc, sample_doc)


def test_validate_migration_rejects_lost_tables(sample_doc):
    with pytest.raises(ValidationError):
        validate_migration(sample_doc, doc([]))


def test_validate_migration_rejects_malformed_table_data():
    original = doc([custom_table(["h"], [["c"]], table_id="t")])
    broken = doc([{"kind": "basicTable", "attrs": {"tableData": {"headers": [1], "rows": [], "id": "t"}}}])
    with pytest.raises(ValidationError, match="tableData"):
        validate_migration(original, broken)
    missing = doc([{"kind": "basicTable", "attrs": {}}])
    with pytest.raises(ValidationError):
        validate_migration(original, missing)


def test_validate_migration_ignores_existing_basic_tables():
    # A basicTable already in the document is left as it is, whatever its shape.
    legacy_basic = {"kind": "basicTable", "attrs": {"tableData": {"headers": [], "rows": []}}}
    original = doc([legacy_basic, custom_table(["h"], [["c"]])])
    migrated, _ = migrate_tree(original)
    assert validate_migration(original, migrated) == 1


def test_parse_content_accepts_text_and_objects(sample_doc):
    assert parse_content(json.dumps(sample_doc)) == sample_doc
    assert parse_content(sample_doc) is sample_doc


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"', '{"children": []}', '{"kind": "doc", "children": {}}'])
def test_parse_content_rejects_malformed_trees(raw):
    with pytest.raises(ParseError):
        parse_content(raw)


def _all_nodes(tree):
    pending = [tree]
    while pending:
        node = pending.pop()
        if isinstance(node, dict):
            yield node
            pending.extend(node.get("children") or [])
