"""
SELECT-only guard for generated SQL.

This is a textual check, not a parser. It cleans up model formatting and
accepts any text whose first token is SELECT. Statements stacked after a
leading SELECT, or hidden in comments, are NOT detected; the executor's
read-only transaction is what stops those from writing.
"""

import logging
import re

from app.core.errors import UnsafeQuery
from app.core.schemas import ValidatedQuery


logger = logging.getLogger(__name__)

# ``` anywhere; a language tag (```sql) only when a line break follows it,
# so ```SELECT ...``` keeps its keyword
CODE_FENCE = re.compile(r"```(?:(?!(?i:select)\b)[A-Za-z0-9_+-]+(?=[ \t]*\r?\n))?")
TRAILING_TERMINATORS = re.compile(r"[\s;]+$")
LEADING_SELECT = re.compile(r"select\b", re.IGNORECASE)


def clean_sql(raw_text: str) -> str:
    """Strip code fences, surrounding whitespace and trailing semicolons."""
    without_fences = CODE_FENCE.sub("", raw_text)
    return TRAILING_TERMINATORS.sub("", without_fences.strip())


class SqlGuard:
    def validate(self, raw_text: str, question: str = "") -> ValidatedQuery:
        cleaned = clean_sql(raw_text or "")

        if not cleaned:
            raise UnsafeQuery("Only SELECT queries are allowed: the model returned no SQL")

        if not LEADING_SELECT.match(cleaned):
            first_token = cleaned.split(None, 1)[0]
            logger.warning(f"Rejected generated SQL starting with {first_token!r}")
            raise UnsafeQuery(
                f"Only SELECT queries are allowed, got a statement starting with "
                f"{first_token.upper()!r}"
            )

        return ValidatedQuery(sql=cleaned, question=question)
