"""
statements.py - Version-dependent statement text.

Built once per connect and once after a successful upgrade; callers look
statements up by operation name instead of branching on schema version.
"""

from typing import Dict, Iterator

from ._schema import ENCODED_PASSWORD_PLACEHOLDER, SCHEMA_VERSION_LATEST

# operation -> (legacy form, latest form)
_STATEMENTS = {
    "create_account": (
        "INSERT INTO users (nickname, host, password, email, created_at, last_login) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        "INSERT INTO users (nickname, host, password, email, created_at, last_login, "
        "nickname_lc, encoding_scheme, credential_store, credential_changed_at) "
        "VALUES (?, ?, '" + ENCODED_PASSWORD_PLACEHOLDER + "', ?, ?, ?, ?, ?, ?, ?)",
    ),
    "user_exists": (
        "SELECT nickname FROM users WHERE nickname = ?",
        "SELECT nickname FROM users WHERE nickname_lc = ?",
    ),
    "credential_lookup": (
        "SELECT nickname, password FROM users WHERE nickname = ?",
        "SELECT nickname, password, encoding_scheme, credential_store "
        "FROM users WHERE nickname_lc = ?",
    ),
    "credential_update": (
        "UPDATE users SET password = ? WHERE nickname = ?",
        "UPDATE users SET password = '" + ENCODED_PASSWORD_PLACEHOLDER + "', "
        "encoding_scheme = ?, credential_store = ?, credential_changed_at = ? "
        "WHERE nickname_lc = ?",
    ),
    "session_insert": (
        "INSERT INTO session_results (session_name, player1, player2, player3, player4, "
        "score1, score2, score3, score4, started_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        "INSERT INTO session_results (session_name, player1, player2, player3, player4, "
        "player5, player6, score1, score2, score3, score4, score5, score6, "
        "started_at, duration_sec, winner, options) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
    ),
    "record_login": (
        "INSERT INTO logins (nickname, host, login_at) VALUES (?, ?, ?)",
    ) * 2,
    "host_lookup": (
        "SELECT nickname FROM users WHERE host = ?",
    ) * 2,
    "last_login_update": (
        "UPDATE users SET last_login = ? WHERE nickname = ?",
    ) * 2,
    "user_count": (
        "SELECT count(*) FROM users",
    ) * 2,
}


class StatementRegistry:
    """Operation name -> SQL text for one schema version."""

    def __init__(self, version: int, statements: Dict[str, str]):
        self.version = version
        self._statements = statements

    @classmethod
    def build(cls, version: int) -> "StatementRegistry":
        latest = version >= SCHEMA_VERSION_LATEST
        return cls(version, {
            op: forms[1] if latest else forms[0]
            for op, forms in _STATEMENTS.items()
        })

    def __getitem__(self, operation: str) -> str:
        return self._statements[operation]

    def __contains__(self, operation: str) -> bool:
        return operation in self._statements

    def __iter__(self) -> Iterator[str]:
        return iter(self._statements)

    @property
    def is_latest(self) -> bool:
        return self.version >= SCHEMA_VERSION_LATEST
