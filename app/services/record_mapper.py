"""
Record Mapper — raw persisted rows → view models.

Pure functions, no database access. Rows are plain dicts keyed by column
name (``Model.to_row()`` produces them); missing keys and NULLs are
defaulted here so callers never see a half-populated record:

    status        unset → "draft"
    last_updated  unset → created_at
    faculty_owner unset → "Unassigned"
    assigned_spoc unset → "Unassigned"
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

UNASSIGNED = "Unassigned"


def _coalesce(value: Any, default: Any) -> Any:
    return default if value is None else value


@dataclass
class ProblemStatementView:
    id: str
    ps_code: str
    title: str
    category: str
    theme: str
    status: str
    last_updated: str | None
    created_at: str | None
    faculty_owner: str
    assigned_spoc: str
    description: str
    detailed_description: str | None = None
    created_by: str | None = None
    department_id: str | None = None
    submitted_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AlertItem:
    id: str
    type: str
    title: str
    description: str
    timestamp: str | None
    priority: str

    def to_dict(self) -> dict:
        return asdict(self)


def map_problem_statement(row: dict) -> ProblemStatementView:
    """Map a ``problem_statements`` row to the view model."""
    return ProblemStatementView(
        id=row["id"],
        ps_code=row.get("problem_statement_id") or "",
        title=row.get("title") or "",
        category=row.get("category") or "",
        theme=row.get("theme") or "",
        status=_coalesce(row.get("status"), "draft"),
        last_updated=_coalesce(row.get("last_updated"), row.get("created_at")),
        created_at=row.get("created_at"),
        faculty_owner=_coalesce(row.get("faculty_owner"), UNASSIGNED),
        assigned_spoc=_coalesce(row.get("assigned_spoc"), UNASSIGNED),
        description=row.get("description") or "",
        detailed_description=row.get("detailed_description"),
        created_by=row.get("created_by"),
        department_id=row.get("department_id"),
        submitted_at=row.get("submitted_at"),
    )


def map_problem_statements(rows) -> list[ProblemStatementView]:
    return [map_problem_statement(r) for r in rows]


def map_alert(row: dict) -> AlertItem:
    """Map a ``problem_statement_alerts`` row; created_at becomes timestamp."""
    return AlertItem(
        id=row["id"],
        type=row.get("type") or "reminder",
        title=row.get("title") or "",
        description=row.get("description") or "",
        timestamp=row.get("created_at"),
        priority=row.get("priority") or "medium",
    )
