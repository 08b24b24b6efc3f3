"""PostgreSQL database operations for study records.

Provides the Database class with methods for:
- get_study: Load a study by id
- update_study_field: Write one required field
- set_study_status: Move a study between draft/active/completed
"""

from __future__ import annotations

import os
from typing import Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from studysetup.fields import FIELD_ORDER


STUDY_STATUSES = ("draft", "active", "completed")


class StudyStoreProtocol(Protocol):
    """Protocol defining the study store interface for dependency injection."""

    def get_study(self, study_id: str) -> dict | None:
        """Load a study record. Returns None if it does not exist."""
        ...

    def update_study_field(self, study_id: str, field: str, value: str) -> None:
        """Write a single required field on a study."""
        ...

    def set_study_status(self, study_id: str, status: str) -> None:
        """Update the study's status."""
        ...


def _get_connection_string() -> str:
    """Get database connection string from environment or default."""
    return os.environ.get(
        "DATABASE_URL",
        "postgresql://localhost/studysetup"
    )


def _check_field(field: str) -> None:
    if field not in FIELD_ORDER:
        raise ValueError(f"Unknown study field: {field}")


def _check_status(status: str) -> None:
    if status not in STUDY_STATUSES:
        raise ValueError(f"Unknown study status: {status}")


class Database:
    """PostgreSQL client for the studies table."""

    def __init__(self, connection_string: str | None = None):
        """Initialize database connection.

        Args:
            connection_string: PostgreSQL connection string.
                Defaults to DATABASE_URL env var or localhost/studysetup.
        """
        self._conninfo = connection_string or _get_connection_string()

    def _connect(self) -> psycopg.Connection:
        """Create a new database connection."""
        return psycopg.connect(self._conninfo, row_factory=dict_row)

    def get_study(self, study_id: str) -> dict | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM studies WHERE id = %s", (study_id,))
                row = cur.fetchone()
                return dict(row) if row else None

    def update_study_field(self, study_id: str, field: str, value: str) -> None:
        """Update one required field on a study.

        Args:
            study_id: The study to update.
            field: One of the five required field names.
            value: New value.
        """
        _check_field(field)
        query = sql.SQL(
            "UPDATE studies SET {field} = %s, updated_at = NOW() WHERE id = %s"
        ).format(field=sql.Identifier(field))

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (value, study_id))
                conn.commit()

    def set_study_status(self, study_id: str, status: str) -> None:
        """Set the study status. Activating a study also marks setup complete."""
        _check_status(status)
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE studies
                    SET status = %s,
                        inception_complete = inception_complete OR %s,
                        updated_at = NOW()
                    WHERE id = %s
                    """,
                    (status, status == "active", study_id)
                )
                conn.commit()


class MockDatabase:
    """In-memory mock database for testing."""

    def __init__(self, studies: list[dict] | None = None):
        self._studies: dict[str, dict] = {}
        self.field_writes: list[tuple[str, str, str]] = []
        self.status_writes: list[tuple[str, str]] = []
        for study in studies or []:
            self.add_study(study)

    def add_study(self, study: dict) -> None:
        record = {f: "" for f in FIELD_ORDER}
        record.update({"status": "draft", "inception_complete": False})
        record.update(study)
        self._studies[str(record["id"])] = record

    def get_study(self, study_id: str) -> dict | None:
        record = self._studies.get(str(study_id))
        return dict(record) if record else None

    def update_study_field(self, study_id: str, field: str, value: str) -> None:
        _check_field(field)
        self.field_writes.append((str(study_id), field, value))
        record = self._studies.get(str(study_id))
        if record is not None:
            record[field] = value

    def set_study_status(self, study_id: str, status: str) -> None:
        _check_status(status)
        self.status_writes.append((str(study_id), status))
        record = self._studies.get(str(study_id))
        if record is not None:
            record["status"] = status
            if status == "active":
                record["inception_complete"] = True
