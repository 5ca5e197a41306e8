"""
Conversion of one deprecated ``customTable`` node into a ``basicTable``.

The conversion is intentionally lossy: only the header and cell text and
the table id survive.  Styling, settings, row headers and any nested markup
of the legacy node are discarded, matching what the editor's simple table
can render.
"""

from __future__ import annotations

import itertools
import secrets
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .cells import normalize_cell
from .node_schema import KIND_LAYOUT, NodeLayout, basic_table

IdFactory = Callable[[], str]


class TableIdFactory:
    """
    Generates table ids for tables that never had one.  A factory is created
    per migration run; every id it hands out is unique within that run
    because it embeds a monotonically increasing counter.  The run prefix
    (millisecond timestamp plus random hex) keeps ids from different runs
    apart but callers must not rely on ids being stable across runs.
    """

    def __init__(self, prefix: str = "migrated-table") -> None:
        self.run_prefix = f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self.run_prefix}-{n}"


def _convert_headers(headers: Any, strip_html: bool) -> List[str]:
    if not isinstance(headers, list):
        return []
    return [normalize_cell(h, header=True, strip_html=strip_html) for h in headers]


def _convert_rows(rows: Any, strip_html: bool) -> List[List[str]]:
    if not isinstance(rows, list):
        return []
    converted: List[List[str]] = []
    for row in rows:
        if isinstance(row, list):
            converted.append([normalize_cell(c, strip_html=strip_html) for c in row])
        else:
            converted.append([""])
    return converted


def convert_table(
    node: Dict[str, Any],
    id_factory: IdFactory,
    *,
    layout: NodeLayout = KIND_LAYOUT,
    strip_html: bool = False,
) -> Dict[str, Any]:
    """
    Build the ``basicTable`` equivalent of ``node``.  The input is never
    modified; a fresh node is returned.

    :param node: A node whose kind is ``customTable``.
    :param id_factory: Called once when the node carries no usable
        ``tableId``.
    :param layout: Key names of the document tree.
    :param strip_html: Forwarded to the cell normalizer.
    """
    attrs = node.get(layout.attrs_key)
    if not isinstance(attrs, dict):
        attrs = {}

    table_id: Optional[str] = attrs.get("tableId")
    if not isinstance(table_id, str) or not table_id:
        table_id = id_factory()

    return basic_table(
        _convert_headers(attrs.get("headers"), strip_html),
        _convert_rows(attrs.get("rows"), strip_html),
        table_id,
        layout=layout,
    )
