"""
Top-level package for the customTable → basicTable content migration.

This package audits a store of persisted editor documents, rewrites every
deprecated ``customTable`` block as a text-only ``basicTable`` block, and
keeps a backup journal so a committed batch can be rolled back.  Modules
are split into subpackages:

* :mod:`table_migrator.parsers` – cell normalization, table conversion and
  tree traversal (pure functions)
* :mod:`table_migrator.stores` – DuckDB, HTTP and in-memory document stores
* :mod:`table_migrator.utils` – error taxonomy, JSON Lines event logs and
  report files

:mod:`table_migrator.audit` and :mod:`table_migrator.backup` hold the audit
scanner and the backup manager; orchestration is handled in
:mod:`table_migrator.migration_tool`.
"""

__version__ = "1.0.0"
