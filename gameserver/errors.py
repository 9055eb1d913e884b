"""
errors.py - Storage error taxonomy.

Foreground request handlers never see ConnectionUnavailable for a merely
absent database; they get the NOT_CONNECTED sentinel instead. Everything that
leaves durable state behind (DDL, batch conversion) raises loudly.
"""

from typing import Dict, List, Optional


class _NotConnected:
    """Falsy sentinel returned by foreground queries when there is no database."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_CONNECTED"


NOT_CONNECTED = _NotConnected()


class StorageError(Exception):
    """Base class for account database errors."""


class ConnectionUnavailable(StorageError):
    """The database can't be reached; the host may continue without persistence."""


class ConnectError(ConnectionUnavailable):
    """connect() failed: driver, credentials, setup script or version detection."""


class TransactionTimeout(StorageError):
    """Gave up waiting for another task to release the shared connection."""


class IncompleteUpgradeError(StorageError):
    """Ledger shows a schema upgrade whose DDL never finished."""

    def __init__(self, from_version: int, to_version: int):
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(
            "Incomplete DB schema upgrade from version %d to %d: "
            "schema_version.ddl_done is null; restore from backup or repair manually"
            % (from_version, to_version)
        )


class AlreadyLatestSchema(StorageError):
    """upgrade_schema() called when the schema is already the latest version."""


class PrecheckFailed(StorageError):
    """Upgrade refused before any DDL ran."""

    def __init__(self, message: str, duplicate_groups: Optional[Dict[str, List[str]]] = None,
                 table_owner: Optional[str] = None):
        super().__init__(message)
        self.duplicate_groups = duplicate_groups or {}
        self.table_owner = table_owner


class PartialUpgradeFailure(StorageError):
    """A DDL step failed; completed steps of the transition were rolled back."""

    def __init__(self, message: str, step: str = "", rolled_back: bool = True):
        super().__init__(message)
        self.step = step
        self.rolled_back = rolled_back


class UnrecoverableSchemaState(PartialUpgradeFailure):
    """A failed transition could not be undone; the DB must be restored from backup."""

    def __init__(self, message: str, step: str = ""):
        super().__init__(message, step=step, rolled_back=False)


class BackgroundTaskError(StorageError):
    """The background migration stopped on an error; its ledger row stays unstamped."""


class SelfTestFailed(StorageError):
    """One or more required DB self-tests failed."""
