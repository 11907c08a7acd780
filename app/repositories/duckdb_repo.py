"""DuckDB connection wrapper with schema initialization."""

from pathlib import Path

import duckdb


class DuckDBRepo:
    """Manages a DuckDB connection and schema lifecycle.

    Opens a single persistent connection at startup.  Callers obtain
    cursors via ``connection.cursor()`` so request handlers and the
    auto-save loop never share cursor state.
    """

    def __init__(self, db_path: str | Path) -> None:
        db_path = str(db_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.connection: duckdb.DuckDBPyConnection = duckdb.connect(db_path)
        self.connection.execute("PRAGMA threads=4")

    def initialize_schema(self) -> None:
        """Create tables if they do not already exist.

        No PRIMARY KEY or FOREIGN KEY constraints: annotation saves are
        delete-then-insert per id, and bulk suggestion imports go through
        ``INSERT ... SELECT`` from DataFrames.  Timestamps are naive UTC.
        """
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS images (
                id              VARCHAR NOT NULL,
                file_name       VARCHAR NOT NULL,
                path            VARCHAR NOT NULL,
                width           INTEGER NOT NULL,
                height          INTEGER NOT NULL,
                created_at      TIMESTAMP DEFAULT current_timestamp
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS annotations (
                id              VARCHAR NOT NULL,
                image_id        VARCHAR NOT NULL,
                class_name      VARCHAR NOT NULL,
                bbox_x          DOUBLE NOT NULL,
                bbox_y          DOUBLE NOT NULL,
                bbox_w          DOUBLE NOT NULL,
                bbox_h          DOUBLE NOT NULL,
                confidence      DOUBLE DEFAULT 1.0,
                state           VARCHAR DEFAULT 'Suggested',
                source          VARCHAR DEFAULT 'review',
                segmentation    JSON,
                created_at      TIMESTAMP,
                modified_at     TIMESTAMP,
                metadata        JSON
            )
        """)

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self.connection.close()
