"""
Read-only audit of the document store.

The audit asks the store for every document whose serialized content
contains the deprecated kind marker (``"customTable"`` with its quotes).
The text search is a cheap pre-filter: a false positive (the marker inside
a cell, say) is rejected later when the tree walker finds nothing to
convert, while a document that really holds a legacy table always
contains the marker.

A deep audit additionally reads every candidate and counts its legacy
tables, which weeds out false positives and gives an estimate of the
migration effort.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from .models import AuditCandidate, AuditReport
from .parsers.node_schema import DEPRECATED_KIND, KIND_LAYOUT, NodeLayout, parse_content
from .parsers.tree_walker import count_nodes
from .stores.base import DocumentStore
from .utils.errors import MigrationError, QueryError

logger = logging.getLogger(__name__)


def estimate_minutes(total_tables: int, documents: int) -> int:
    # Roughly 100ms per table plus 500ms of overhead per document.
    return math.ceil((total_tables * 0.1 + documents * 0.5) / 60)


def scan(
    store: DocumentStore,
    *,
    layout: NodeLayout = KIND_LAYOUT,
    marker: Optional[str] = None,
    deep: bool = False,
) -> AuditReport:
    """
    List the candidate documents.  Nothing is written.

    :param store: The persisted store to query.
    :param layout: Key names of the stored trees.
    :param marker: Override the marker string searched for.
    :param deep: Read each candidate and count its legacy tables.
    :raises QueryError: if the store cannot be queried.  This is fatal to
        the audit as a whole.
    """
    marker = marker or layout.marker
    start = time.time()
    logger.info("Starting audit for %s", marker)
    try:
        rows = store.query_ids_containing_marker(marker)
    except QueryError:
        raise
    except Exception as e:
        raise QueryError(f"Audit query failed: {e}") from e

    candidates = [AuditCandidate(**row) for row in rows]
    report = AuditReport(marker=marker, candidates=candidates, deep=deep)

    if deep:
        total_tables = 0
        for candidate in candidates:
            try:
                tree = parse_content(store.read_document(candidate.id), layout)
            except MigrationError as e:
                logger.warning("Could not inspect %s during audit: %s", candidate.id, e)
                continue
            candidate.table_count = count_nodes(tree, DEPRECATED_KIND, layout=layout)
            candidate.migration_required = candidate.table_count > 0
            total_tables += candidate.table_count
        report.total_tables = total_tables
        report.estimated_minutes = estimate_minutes(total_tables, len(report.affected_ids))

    logger.info(
        "Audit completed in %.0fms: %d candidate(s)%s",
        (time.time() - start) * 1000,
        len(candidates),
        f", {report.total_tables} table(s)" if deep else "",
    )
    return report
