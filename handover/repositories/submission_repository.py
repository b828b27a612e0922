import json
import logging
import sqlite3
from datetime import datetime

from handover.db.connection import transaction
from handover.models.submission import ClaimStatus, FileCategory, Submission, SubmissionStatus
from handover.models.timestamps import from_db, to_db
from handover.repositories.base import AbstractSubmissionRepository

logger = logging.getLogger(__name__)

_LIST_COLUMNS = (
    "main_responsibilities",
    "essential_tools",
    "critical_skills",
    "communication_methods",
    "process_files",
    "template_files",
    "example_files",
    "keywords",
    "categories",
)

_FILE_COLUMNS = ("process_files", "template_files", "example_files")

_CATEGORY_COLUMNS = {
    FileCategory.PROCESS: "process_files",
    FileCategory.TEMPLATE: "template_files",
    FileCategory.EXAMPLE: "example_files",
}


def _row_to_submission(row: sqlite3.Row) -> Submission:
    data = dict(row)
    for column in _LIST_COLUMNS:
        data[column] = json.loads(data[column] or "[]")
    data["allow_followup"] = bool(data["allow_followup"])
    data["status"] = SubmissionStatus(data["status"])
    data["claim_status"] = ClaimStatus(data["claim_status"])
    for column in ("created_at", "enriched_at", "approved_at", "rejected_at"):
        data[column] = from_db(data[column])
    return Submission(**data)


class SubmissionRepository(AbstractSubmissionRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert(self, submission: Submission) -> None:
        """Single-row insert; moderation and enrichment fields start empty."""
        with transaction(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO knowledge_submissions
                    (id, token_code, position_level, department, experience_range,
                     team_size_range, main_responsibilities, essential_tools,
                     critical_skills, learning_resources, common_problems, solutions,
                     communication_methods, collaboration_tips, handoff_advice,
                     final_advice, allow_followup, process_files, template_files,
                     example_files, status, claim_status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    submission.id,
                    submission.token_code,
                    submission.position_level,
                    submission.department,
                    submission.experience_range,
                    submission.team_size_range,
                    json.dumps(submission.main_responsibilities),
                    json.dumps(submission.essential_tools),
                    json.dumps(submission.critical_skills),
                    submission.learning_resources,
                    submission.common_problems,
                    submission.solutions,
                    json.dumps(submission.communication_methods),
                    submission.collaboration_tips,
                    submission.handoff_advice,
                    submission.final_advice,
                    int(submission.allow_followup),
                    json.dumps(submission.process_files),
                    json.dumps(submission.template_files),
                    json.dumps(submission.example_files),
                    submission.status.value,
                    submission.claim_status.value,
                    to_db(submission.created_at),
                ),
            )

    def get(self, submission_id: str) -> Submission | None:
        with transaction(self._db_path) as conn:
            row = conn.execute(
                "SELECT * FROM knowledge_submissions WHERE id = ?", (submission_id,)
            ).fetchone()
        return _row_to_submission(row) if row else None

    def set_claim_status(self, submission_id: str, claim_status: ClaimStatus) -> bool:
        with transaction(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE knowledge_submissions
                SET claim_status = ?
                WHERE id = ? AND claim_status = 'pending'
                """,
                (claim_status.value, submission_id),
            )
            return cursor.rowcount == 1

    def approve(self, submission_id: str, admin_id: str, now: datetime) -> bool:
        with transaction(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE knowledge_submissions
                SET status = 'approved', approved_at = ?, approved_by = ?
                WHERE id = ? AND status = 'pending' AND claim_status = 'claimed'
                """,
                (to_db(now), admin_id, submission_id),
            )
            return cursor.rowcount == 1

    def reject(self, submission_id: str, admin_id: str, now: datetime) -> bool:
        with transaction(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE knowledge_submissions
                SET status = 'rejected', rejected_at = ?, rejected_by = ?
                WHERE id = ? AND status = 'pending' AND claim_status = 'claimed'
                """,
                (to_db(now), admin_id, submission_id),
            )
            return cursor.rowcount == 1

    def apply_enrichment(
        self,
        submission_id: str,
        summary: str | None,
        keywords: list[str] | None,
        categories: list[str] | None,
        now: datetime,
    ) -> bool:
        """
        Touches only the enrichment columns, so it never conflicts with moderation.
        A field passed as None keeps its stored value.
        """
        with transaction(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE knowledge_submissions
                SET summary = COALESCE(?, summary),
                    keywords = COALESCE(?, keywords),
                    categories = COALESCE(?, categories),
                    enriched_at = ?
                WHERE id = ?
                """,
                (
                    summary,
                    json.dumps(keywords) if keywords is not None else None,
                    json.dumps(categories) if categories is not None else None,
                    to_db(now),
                    submission_id,
                ),
            )
            return cursor.rowcount == 1

    def list_by_status(
        self, status: SubmissionStatus | None = None, claimed_only: bool = True, limit: int = 100
    ) -> list[Submission]:
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if claimed_only:
            clauses.append("claim_status = 'claimed'")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM knowledge_submissions {where} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_submission(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SubmissionStatus}
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS n FROM knowledge_submissions
                WHERE claim_status = 'claimed'
                GROUP BY status
                """
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    def list_unclaimed(self, created_before: datetime | None = None) -> list[Submission]:
        query = "SELECT * FROM knowledge_submissions WHERE claim_status != 'claimed'"
        params: list = []
        if created_before is not None:
            query += " AND created_at < ?"
            params.append(to_db(created_before))
        with transaction(self._db_path) as conn:
            rows = conn.execute(f"{query} ORDER BY created_at DESC", params).fetchall()
        return [_row_to_submission(row) for row in rows]

    def count_for_token(self, token_code: str) -> int:
        with transaction(self._db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM knowledge_submissions WHERE token_code = ?",
                (token_code,),
            ).fetchone()
        return row["n"]

    def is_published_file(self, category: FileCategory, name: str) -> bool:
        """True if an approved, claimed submission references the file."""
        column = _CATEGORY_COLUMNS[category]
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {column} FROM knowledge_submissions
                WHERE status = 'approved' AND claim_status = 'claimed'
                  AND instr({column}, ?) > 0
                """,
                (json.dumps(name),),
            ).fetchall()
        return any(name in json.loads(row[column] or "[]") for row in rows)

    def referenced_file_names(self) -> set[str]:
        names: set[str] = set()
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_FILE_COLUMNS)} FROM knowledge_submissions"
            ).fetchall()
        for row in rows:
            for column in _FILE_COLUMNS:
                names.update(json.loads(row[column] or "[]"))
        return names
