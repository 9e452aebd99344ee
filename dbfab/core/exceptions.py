"""Exception hierarchy for DBFab.

Errors fall into three groups:

1. Configuration errors - a specification cannot be compiled (bad bounds,
   unknown generator, duplicate assignment, unresolved template token).
   They are raised before any statement reaches the database.
2. Database errors - SQLAlchemy exceptions raised by the engine. They are
   logged and surfaced unchanged.
3. Table replacement errors - a shadow-table pass failed part way and left
   tables behind that need manual attention.
"""

from typing import List, Optional, Sequence


class DBFabError(Exception):
    """Base class for all DBFab errors."""


class ConfigurationError(DBFabError, ValueError):
    """A generator, transformation or table specification is invalid."""


class UnsupportedGeneratorError(ConfigurationError):
    """A dialect has no compilation for a generator kind."""

    def __init__(self, dialect: str, kind: str):
        self.dialect = dialect
        self.kind = kind
        super().__init__(f"Generator '{kind}' is not supported by the {dialect} dialect")


class UnsupportedTransformationError(ConfigurationError):
    """A dialect has no compilation for a transformation kind."""

    def __init__(self, dialect: str, kind: str):
        self.dialect = dialect
        self.kind = kind
        super().__init__(f"Transformation '{kind}' is not supported by the {dialect} dialect")


class TemplateError(ConfigurationError):
    """A template references columns that do not exist on the table."""

    def __init__(self, table: str, template: str, unknown: Sequence[str]):
        self.table = table
        self.template = template
        self.unknown = list(unknown)
        super().__init__(
            f"Template '{template}' references unknown columns of {table}: {', '.join(self.unknown)}"
        )


class TableReplacementError(DBFabError):
    """A create/populate/rename/drop pass failed after creating tables.

    ``orphaned_tables`` lists the tables that were left behind. Nothing is
    dropped automatically; see ``DataGenerator.sweep_orphaned_tables``.
    """

    def __init__(self, table: str, step: str, orphaned_tables: Optional[List[str]] = None,
                 message: Optional[str] = None):
        self.table = table
        self.step = step
        self.orphaned_tables = list(orphaned_tables or [])
        detail = message or "table replacement failed"
        orphans = f"; orphaned tables: {', '.join(self.orphaned_tables)}" if self.orphaned_tables else ""
        super().__init__(f"{detail} for {table} during {step}{orphans}")
