"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1


def init_schema(conn: sqlite3.Connection):
    """
    Applies the schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Scan header. Only the latest result is kept.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS scan_results (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            scan_date             TEXT NOT NULL,
            last_asset_date       TEXT,
            total_assets_scanned  INTEGER NOT NULL DEFAULT 0
        );
        """)

        # 3. Groups of the scan
        conn.execute("""
        CREATE TABLE IF NOT EXISTS duplicate_groups (
            scan_id           INTEGER NOT NULL,
            id                TEXT NOT NULL,
            position          INTEGER NOT NULL,
            similarity_type   TEXT NOT NULL,
            match_confidence  REAL NOT NULL,
            PRIMARY KEY (scan_id, id),
            FOREIGN KEY(scan_id) REFERENCES scan_results(id) ON DELETE CASCADE
        );
        """)

        # 4. Items: enough of the asset to re-resolve and re-compare it.
        # Fingerprints are session data and are not stored.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS group_items (
            scan_id        INTEGER NOT NULL,
            group_id       TEXT NOT NULL,
            position       INTEGER NOT NULL,
            item_id        TEXT NOT NULL,
            asset_id       TEXT NOT NULL,
            media_kind     TEXT NOT NULL,
            pixel_width    INTEGER NOT NULL DEFAULT 0,
            pixel_height   INTEGER NOT NULL DEFAULT 0,
            duration       REAL NOT NULL DEFAULT 0,
            byte_size      INTEGER NOT NULL DEFAULT 0,
            creation_date  TEXT,
            latitude       REAL,
            longitude      REAL,
            device_make    TEXT,
            device_model   TEXT,
            PRIMARY KEY (scan_id, group_id, position),
            FOREIGN KEY(scan_id, group_id) REFERENCES duplicate_groups(scan_id, id) ON DELETE CASCADE
        );
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_group_items_asset ON group_items(asset_id);")

    logging.debug("Database schema initialized.")
