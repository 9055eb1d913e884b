SCHEMA_VERSION_ORIGINAL = 1000
SCHEMA_VERSION_1200 = 1200
SCHEMA_VERSION_LATEST = 1200

# Synchronous conversion batch (nickname fill, admin credential encode)
UPGRADE_BATCH_MAX = 100
# Background conversion batch; bcrypt is slow, keep batches short
BG_BATCH_SIZE = 10
BG_START_DELAY_SEC = 5.0

LEDGER_TABLE = "schema_version"
SETTING_COST_FACTOR = "BCRYPT.WORK_FACTOR"

# Stored in users.password once the credential is encoded: the legacy column
# is NOT NULL and can't be relaxed on every engine.
ENCODED_PASSWORD_PLACEHOLDER = "!"

LEGACY_MAX_SEATS = 4
MAX_SEATS = 6

# Legacy (v1000) tables, as created by the original setup script.
LEGACY_SCHEMA_SQL = """
-- Accounts
CREATE TABLE users (
    nickname VARCHAR(20) NOT NULL, host VARCHAR(50), password VARCHAR(20) NOT NULL,
    email VARCHAR(50), created_at TIMESTAMP, last_login TIMESTAMP,
    PRIMARY KEY (nickname)
    );

-- Login history
CREATE TABLE logins (
    nickname VARCHAR(20) NOT NULL, host VARCHAR(50), login_at TIMESTAMP
    );

-- Completed sessions
CREATE TABLE session_results (
    session_name VARCHAR(20) NOT NULL,
    player1 VARCHAR(20), player2 VARCHAR(20), player3 VARCHAR(20), player4 VARCHAR(20),
    score1 SMALLINT, score2 SMALLINT, score3 SMALLINT, score4 SMALLINT,
    started_at TIMESTAMP
    );
"""

# Fresh v1200 tables, ledger row included.
LATEST_SCHEMA_SQL = """
CREATE TABLE schema_version (
    from_version INT NOT NULL, to_version INT NOT NULL,
    ddl_done TIMESTAMP, bg_tasks_done TIMESTAMP,
    PRIMARY KEY (to_version)
    );
INSERT INTO schema_version (from_version, to_version, ddl_done, bg_tasks_done)
    VALUES (1200, 1200, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP);

CREATE TABLE settings (
    name VARCHAR(32) NOT NULL, string_value VARCHAR(500), int_value INT,
    changed_at TIMESTAMP NOT NULL,
    PRIMARY KEY (name)
    );

CREATE TABLE users (
    nickname VARCHAR(20) NOT NULL, host VARCHAR(50), password VARCHAR(20) NOT NULL,
    email VARCHAR(50), created_at TIMESTAMP, last_login TIMESTAMP,
    nickname_lc VARCHAR(20), encoding_scheme INT, credential_store VARCHAR(255),
    credential_changed_at TIMESTAMP,
    PRIMARY KEY (nickname)
    );
CREATE UNIQUE INDEX users__lc ON users(nickname_lc);

CREATE TABLE logins (
    nickname VARCHAR(20) NOT NULL, host VARCHAR(50), login_at TIMESTAMP
    );

CREATE TABLE session_results (
    session_name VARCHAR(20) NOT NULL,
    player1 VARCHAR(20), player2 VARCHAR(20), player3 VARCHAR(20),
    player4 VARCHAR(20), player5 VARCHAR(20), player6 VARCHAR(20),
    score1 SMALLINT, score2 SMALLINT, score3 SMALLINT,
    score4 SMALLINT, score5 SMALLINT, score6 SMALLINT,
    started_at TIMESTAMP, duration_sec INT, winner VARCHAR(20), options VARCHAR(500)
    );
"""
