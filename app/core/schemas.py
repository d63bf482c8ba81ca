from datetime import datetime
from typing import Optional, List, Dict, Any, FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict, Field


# =========================
# SCHEMA CATALOG
# =========================
class SchemaColumn(BaseModel):
    table_name: str
    column_name: str
    data_type: str

    model_config = ConfigDict(frozen=True)


# =========================
# DOMAIN LEXICON
# =========================
class MappingRule(BaseModel):
    """
    Static mapping from natural-language phrases to one canonical table.
    """

    trigger_phrases: FrozenSet[str] = Field(min_length=1)
    canonical_table: str = Field(min_length=1)
    filter_hints: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


# =========================
# QUERY PIPELINE
# =========================
class GeneratedQuery(BaseModel):
    raw_text: str
    question: str

    model_config = ConfigDict(frozen=True)


class ValidatedQuery(BaseModel):
    """SQL text that passed the SELECT-only guard."""

    sql: str
    question: str

    model_config = ConfigDict(frozen=True)


class QueryResult(BaseModel):
    summary: str
    sql: str
    table: List[Dict[str, Any]] = []
    chart: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        # The chart key is only present when a chart was actually rendered
        response = {"summary": self.summary, "sql": self.sql, "table": self.table}
        if self.chart:
            response["chart"] = self.chart
        return response


# =========================
# API
# =========================
class QueryRequest(BaseModel):
    question: Optional[str] = None
    chart: bool = False


class RefreshResponse(BaseModel):
    success: bool
    columns: int
    error: Optional[str] = None


class SchemaStatusResponse(BaseModel):
    initialized: bool
    published_at: Optional[datetime] = None
    stale: bool
    tables: int
    columns: int
