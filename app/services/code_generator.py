"""
Problem Statement code generator.

Format: PS-{year}-{4 digits}   (e.g. PS-2026-4821)

The 4-digit suffix is random, so codes are unique-looking rather than
guaranteed unique. ``next_problem_statement_code`` checks candidates
against existing rows a bounded number of times; the unique constraint on
``problem_statements.problem_statement_id`` remains the final guard.
"""

import logging
import random
from datetime import datetime, timezone

from sqlalchemy import func

from app.models import db
from app.models.problem_statement import ProblemStatement

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 5


def generate_problem_statement_code(now: datetime | None = None, rng: random.Random | None = None) -> str:
    """Return ``PS-<current year>-<1000..9999>``."""
    now = now or datetime.now(timezone.utc)
    rng = rng or random
    suffix = rng.randint(1000, 9999)
    return f"PS-{now.year}-{suffix}"


def next_problem_statement_code() -> str:
    """Generate a code not yet present in ``problem_statements``.

    After ``_MAX_ATTEMPTS`` collisions the last candidate is returned as-is
    and the insert is left to the unique constraint.
    """
    code = generate_problem_statement_code()
    for attempt in range(_MAX_ATTEMPTS):
        taken = (
            db.session.query(func.count(ProblemStatement.id))
            .filter(ProblemStatement.problem_statement_id == code)
            .scalar()
        ) or 0
        if not taken:
            return code
        logger.debug("Problem statement code collision attempt=%d code=%s", attempt + 1, code)
        code = generate_problem_statement_code()
    return code
