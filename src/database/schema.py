# SQL Schema Definitions for the SMA Octopus Battery Manager

SCHEMA_VERSION = 1  # Increment when schema changes

# Table: schema_version
# Tracks database schema version for migrations
CREATE_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);
"""

# Table: session_state
# Exactly one row (id = 1) holding the charging session record as JSON
CREATE_SESSION_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS session_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Table: charging_decisions
# One row per decision cycle
CREATE_DECISIONS_TABLE = """
CREATE TABLE IF NOT EXISTS charging_decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    should_charge INTEGER,
    rule TEXT,
    rationale TEXT,
    state_of_charge REAL,
    command TEXT,
    parameters TEXT, -- JSON stored as text
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_decisions_timestamp ON charging_decisions(timestamp);",
]

ALL_TABLES = [
    CREATE_SCHEMA_VERSION_TABLE,  # Must be first for migrations to work
    CREATE_SESSION_STATE_TABLE,
    CREATE_DECISIONS_TABLE,
]

# Each migration is a tuple: (version, description, list of SQL statements)
MIGRATIONS = [
    (1, "Initial schema", []),
]
