import asyncio
import logging
import uuid
from numbers import Number
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from app.core.errors import ChartRenderFailed
from app.core.schemas import QueryResult


logger = logging.getLogger(__name__)

CHART_URL_PREFIX = "/charts"


# =========================
# Charts
# =========================
class ChartRenderer(Protocol):
    def render(self, rows: Sequence[Dict[str, Any]]) -> Optional[str]: ...


def _is_numeric(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def pick_chart_columns(rows: Sequence[Dict[str, Any]]):
    """
    First text column as categories, first numeric column as values.
    Returns None when the rows have no such pair.
    """
    if not rows:
        return None
    columns = list(rows[0].keys())
    label = next((c for c in columns if isinstance(rows[0][c], str)), None)
    value = next((c for c in columns if _is_numeric(rows[0][c])), None)
    if label is None or value is None:
        return None
    return label, value


class MatplotlibChartRenderer:
    """
    Bar chart PNGs written under chart_dir, returned as /charts/<file> URLs.

    Figures are built without pyplot, so worker threads share no global
    figure state. Only the newest max_files charts are kept on disk.
    """

    def __init__(self, chart_dir: Path, max_files: int = 200):
        self.chart_dir = chart_dir
        self.max_files = max_files

    def render(self, rows: Sequence[Dict[str, Any]]) -> Optional[str]:
        picked = pick_chart_columns(rows)
        if picked is None:
            return None
        label, value = picked

        from matplotlib.figure import Figure

        categories = [str(row.get(label)) for row in rows]
        values = [float(row[value]) if _is_numeric(row.get(value)) else 0.0 for row in rows]

        fig = Figure(figsize=(10, 5))
        ax = fig.subplots()
        try:
            ax.bar(range(len(categories)), values)
            ax.set_xlabel(label)
            ax.set_ylabel(value)
            ax.set_xticks(range(len(categories)))
            ax.set_xticklabels(categories, rotation=45, ha="right", fontsize=9)
            ax.grid(axis="y", alpha=0.3)
            fig.tight_layout()

            self.chart_dir.mkdir(parents=True, exist_ok=True)
            file_name = f"{uuid.uuid4().hex}.png"
            fig.savefig(self.chart_dir / file_name, format="png", dpi=100)
        except (OSError, ValueError) as error:
            raise ChartRenderFailed(f"Could not draw chart: {error}") from error

        self.prune(keep=file_name)
        return f"{CHART_URL_PREFIX}/{file_name}"

    def prune(self, keep: Optional[str] = None) -> None:
        """Delete the oldest charts beyond max_files, never the one named keep."""
        charts = []
        for path in self.chart_dir.glob("*.png"):
            if path.name == keep:
                continue
            try:
                charts.append((path.stat().st_mtime, path))
            except FileNotFoundError:
                continue
        charts.sort(reverse=True)
        limit = self.max_files - 1 if keep else self.max_files
        for _, path in charts[max(limit, 0) :]:
            path.unlink(missing_ok=True)


# =========================
# Shaper
# =========================
class ResultShaper:
    """Bounds executed rows into the response payload."""

    def __init__(self, max_rows: int = 20, chart_renderer: Optional[ChartRenderer] = None):
        self.max_rows = max_rows
        self.chart_renderer = chart_renderer

    async def shape(
        self,
        rows: List[Dict[str, Any]],
        question: str,
        sql: str,
        with_chart: bool = False,
    ) -> QueryResult:
        table = list(rows[: self.max_rows])
        chart = None
        if with_chart and table:
            chart = await self._render_chart(table)

        return QueryResult(
            summary=f'Fetched {len(rows)} rows for "{question}"',
            sql=sql,
            table=table,
            chart=chart,
        )

    async def _render_chart(self, table: List[Dict[str, Any]]) -> Optional[str]:
        if self.chart_renderer is None:
            return None
        try:
            return await asyncio.to_thread(self.chart_renderer.render, table)
        except Exception as error:
            # A chart is a bonus, the rows still go out
            logger.error(f"Chart rendering failed: {error}")
            return None
