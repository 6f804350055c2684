import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

DB_NAME = os.environ.get('TRADESIM_DB_PATH') or 'tradesim.db'


def _resolve_path(db_path=None):
    return db_path or DB_NAME


def init_database(db_path=None, conn=None):
    """Initialize the SQLite database with the required schema."""
    owns_conn = conn is None
    if owns_conn:
        conn = sqlite3.connect(_resolve_path(db_path))
    # Ensure foreign key constraints are enforced (SQLite requires this per-connection)
    conn.execute('PRAGMA foreign_keys = ON;')
    cursor = conn.cursor()

    # Canonical bars table (real and synthetic sources)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS bars (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            symbol TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            ts_start TEXT NOT NULL,              -- ISO-8601 UTC start of bar
            duration_sec INTEGER NOT NULL,       -- e.g., 60 for 1m
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            volume REAL,
            data_source TEXT NOT NULL,           -- vendor name | synthetic
            scenario TEXT,                       -- NULL for real sources
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')
    cursor.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS idx_bars_unique
        ON bars(symbol, timeframe, ts_start, data_source, scenario)
    ''')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_bars_symbol_tf_ts
        ON bars(symbol, timeframe, ts_start)
    ''')

    # One row per game session; decisions live in their own table
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS game_sessions (
            id TEXT PRIMARY KEY,
            seed INTEGER NOT NULL,
            symbol TEXT,
            total_frames INTEGER NOT NULL,
            current_frame INTEGER NOT NULL,
            status TEXT NOT NULL,
            total_score TEXT NOT NULL,           -- Decimal as text
            total_pnl TEXT NOT NULL,
            decision_count INTEGER NOT NULL,
            timeout_count INTEGER NOT NULL,
            avg_response_time_ms REAL,
            extra_json TEXT NOT NULL,            -- keypoints + response-time sample count
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            updated_at TEXT NOT NULL
        )
    ''')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_game_sessions_status ON game_sessions(status)
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS game_decisions (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            frame_index INTEGER NOT NULL,
            bar_index INTEGER,
            decision_type TEXT NOT NULL,
            price TEXT,
            quantity TEXT NOT NULL,
            response_time_ms INTEGER,
            pnl TEXT,
            score TEXT,
            client_id TEXT,
            ts TEXT NOT NULL,
            UNIQUE(session_id, frame_index),
            FOREIGN KEY(session_id) REFERENCES game_sessions(id) ON DELETE CASCADE
        )
    ''')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_game_decisions_session ON game_decisions(session_id, frame_index)
    ''')

    # Append-only domain event log
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS game_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            ts TEXT NOT NULL,
            event_type TEXT NOT NULL,
            payload_json TEXT NOT NULL
        )
    ''')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_game_events_session ON game_events(session_id, id)
    ''')

    conn.commit()
    if owns_conn:
        conn.close()
    logger.info("Database %s initialized", _resolve_path(db_path) if owns_conn else "<connection>")


def get_db_connection(db_path=None):
    """Get a database connection."""
    conn = sqlite3.connect(_resolve_path(db_path))
    conn.execute('PRAGMA foreign_keys = ON;')
    return conn


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    init_database()
