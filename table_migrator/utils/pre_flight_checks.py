from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import MigrationError

if TYPE_CHECKING:
    from ..stores.base import DocumentStore

logger = logging.getLogger(__name__)


class PreFlightCheckError(Exception):
    """Custom exception for pre-flight check failures."""
    pass


def run_store_pre_flight_checks(store: "DocumentStore", marker: str) -> None:
    """
    Verifies that the document store answers before a committing run starts.

    Args:
        store: The document store the run will use.
        marker: The marker string the run will search for.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    logger.info("Running pre-flight checks...")

    try:
        candidates = store.query_ids_containing_marker(marker)
    except MigrationError as e:
        raise PreFlightCheckError(f"Document store is not reachable: {e}") from e

    if candidates:
        first = candidates[0]["id"]
        try:
            store.read_document(first)
        except MigrationError as e:
            raise PreFlightCheckError(f"Could not read candidate document {first}: {e}") from e

    logger.info("Pre-flight checks passed successfully.")
