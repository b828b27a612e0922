import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

BUSY_TIMEOUT_SECONDS = 10


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode, foreign keys and row factory enabled."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def transaction(db_path: str, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """
    Yield a connection inside a transaction; commit on success, roll back on error.

    With immediate=True the write lock is taken up front (BEGIN IMMEDIATE), so
    writers from other threads or processes queue on the busy timeout instead of
    racing on a stale read snapshot.
    """
    with closing(get_connection(db_path)) as conn:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def run_migrations(db_path: str) -> None:
    """Apply any unapplied SQL migration files from the migrations directory."""
    with closing(get_connection(db_path)) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS _schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.commit()

        applied = {
            row["filename"]
            for row in conn.execute("SELECT filename FROM _schema_migrations")
        }

        for migration_path in sorted(_MIGRATIONS_DIR.glob("*.sql")):
            filename = migration_path.name
            if filename in applied:
                continue
            logger.info("[db] applying migration | file=%s", filename)
            conn.executescript(migration_path.read_text())
            conn.execute(
                "INSERT INTO _schema_migrations (filename) VALUES (?)", (filename,)
            )
            conn.commit()
            logger.info("[db] migration applied | file=%s", filename)
