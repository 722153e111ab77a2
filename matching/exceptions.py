"""
Fatal errors raised by the match pipeline and verification entry points.

All of them are raised before any engine or remote call runs, so callers
never see partial output alongside one of these.
"""


class FirmMatchError(Exception):
    """Base class for pipeline-aborting errors."""


class MissingColumnError(FirmMatchError):
    """A required column is absent from an input table."""

    def __init__(self, column: str, table: str):
        self.column = column
        self.table = table
        super().__init__(f"Column '{column}' not found in {table}.")


class DuplicateKeyError(FirmMatchError):
    """Two or more dictionary entries normalize to the same key."""

    def __init__(self, key: str, count: int):
        self.key = key
        self.count = count
        super().__init__(
            f"Dictionary contains {count} duplicate normalized names. "
            f"Example duplicate: '{key}'. "
            "Please deduplicate your dictionary (e.g. keep highest revenue) before running."
        )


class MissingCredentialsError(FirmMatchError):
    """Judgment-service credentials are not configured."""


class DuplicateQueryIdError(FirmMatchError):
    """Two or more query rows share the same id."""

    def __init__(self, query_id: str, count: int):
        self.query_id = query_id
        self.count = count
        super().__init__(
            f"Queries contain {count} repeated ids. "
            f"Example repeated id: '{query_id}'. "
            "Each query row needs a unique id."
        )
