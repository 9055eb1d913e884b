from ._schema import (
    LATEST_SCHEMA_SQL,
    LEGACY_SCHEMA_SQL,
    SCHEMA_VERSION_1200,
    SCHEMA_VERSION_LATEST,
    SCHEMA_VERSION_ORIGINAL,
)
from .accounts import AccountRepo
from .bg_migration import BackgroundMigrationWorker, MigrationResult
from .context import DatabaseContext
from .ledger import VersionLedger
from .selftest import run_self_tests
from .sessions import SessionRepo, SessionResult
from .settings import SettingsRepo
from .setup_script import run_setup_script, run_setup_script_text
from .statements import StatementRegistry
from .upgrade import SchemaUpgrader, UpgradeOutcome, upgrade_schema
from .version import VersionInfo, detect_schema_version

__all__ = [
    "LATEST_SCHEMA_SQL",
    "LEGACY_SCHEMA_SQL",
    "SCHEMA_VERSION_1200",
    "SCHEMA_VERSION_LATEST",
    "SCHEMA_VERSION_ORIGINAL",
    "AccountRepo",
    "BackgroundMigrationWorker",
    "MigrationResult",
    "DatabaseContext",
    "VersionLedger",
    "run_self_tests",
    "SessionRepo",
    "SessionResult",
    "SettingsRepo",
    "run_setup_script",
    "run_setup_script_text",
    "StatementRegistry",
    "SchemaUpgrader",
    "UpgradeOutcome",
    "upgrade_schema",
    "VersionInfo",
    "detect_schema_version",
]
