import logging
import sqlite3
from datetime import datetime

from handover.db.connection import transaction
from handover.models.timestamps import from_db, to_db
from handover.models.token import AccessToken
from handover.repositories.base import AbstractTokenRepository

logger = logging.getLogger(__name__)


def _row_to_token(row: sqlite3.Row) -> AccessToken:
    return AccessToken(
        code=row["code"],
        issued_by=row["issued_by"],
        issued_at=from_db(row["issued_at"]),
        expires_at=from_db(row["expires_at"]),
        consumed=bool(row["consumed"]),
        consumed_at=from_db(row["consumed_at"]),
    )


class TokenRepository(AbstractTokenRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert(self, token: AccessToken) -> None:
        with transaction(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO access_tokens
                    (code, issued_by, issued_at, expires_at, consumed, consumed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    token.code,
                    token.issued_by,
                    to_db(token.issued_at),
                    to_db(token.expires_at),
                    int(token.consumed),
                    to_db(token.consumed_at),
                ),
            )

    def get(self, code: str) -> AccessToken | None:
        with transaction(self._db_path) as conn:
            row = conn.execute(
                "SELECT * FROM access_tokens WHERE code = ?", (code,)
            ).fetchone()
        return _row_to_token(row) if row else None

    def claim(self, code: str, now: datetime) -> bool:
        """
        Single conditional UPDATE; the row count is the authoritative outcome.
        Concurrent callers serialize on the SQLite write lock, so exactly one sees 1.
        """
        stamp = to_db(now)
        with transaction(self._db_path, immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE access_tokens
                SET consumed = 1, consumed_at = ?
                WHERE code = ? AND consumed = 0 AND expires_at > ?
                """,
                (stamp, code, stamp),
            )
            claimed = cursor.rowcount == 1
        logger.debug("[tokens] claim | code_prefix=%s | claimed=%s", code[:3], claimed)
        return claimed

    def list_recent(self, limit: int = 10) -> list[AccessToken]:
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM access_tokens ORDER BY issued_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_token(row) for row in rows]
