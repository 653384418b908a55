import sqlite3


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS blobs (
          key TEXT PRIMARY KEY,
          name TEXT NOT NULL,
          media_type TEXT NOT NULL,
          data BLOB NOT NULL,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    # Small keyed JSON documents (the job snapshot lives here)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS documents (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL,
          updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
