"""Question -> SQL -> rows orchestration.

Flow per request:
1. Reject a missing question
2. Pick up one schema snapshot (refreshing it when past its TTL)
3. Resolve domain mapping rules
4. Assemble the prompt and generate SQL
5. Validate SQL safety (SELECT only)
6. Execute the read-only query
7. Shape rows (+ optional chart) into the response
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from app.ai_feature.executor import QueryExecutor
from app.ai_feature.generator import QueryGenerator, create_generator
from app.ai_feature.lexicon import DomainLexicon
from app.ai_feature.prompt import PromptAssembler
from app.ai_feature.schema_store import SchemaStore, SqlCatalogSource
from app.ai_feature.shaper import MatplotlibChartRenderer, ResultShaper
from app.ai_feature.sql_guard import SqlGuard
from app.core.config import settings
from app.core.database import AsyncSessionLocal, engine
from app.core.errors import MissingInput, SourceUnavailable
from app.core.schemas import GeneratedQuery, QueryResult


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class NLQueryService:
    def __init__(
        self,
        store: SchemaStore,
        lexicon: DomainLexicon,
        generator: QueryGenerator,
        executor: QueryExecutor,
        shaper: ResultShaper,
        assembler: Optional[PromptAssembler] = None,
        guard: Optional[SqlGuard] = None,
        schema_ttl: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.lexicon = lexicon
        self.generator = generator
        self.executor = executor
        self.shaper = shaper
        self.assembler = assembler or PromptAssembler()
        self.guard = guard or SqlGuard()
        self.schema_ttl = schema_ttl

    async def answer(self, question: Optional[str], with_chart: bool = False) -> QueryResult:
        """
        Answer one question with a bounded table of rows.

        Raises:
            MissingInput, GenerationUnavailable, UnsafeQuery, ExecutionFailed
        """
        if not question or not question.strip():
            raise MissingInput("Missing question")
        question = question.strip()

        # One snapshot for the whole request, even if a refresh lands meanwhile
        snapshot = await self.store.ensure_fresh(self.schema_ttl)
        if not snapshot.is_initialized:
            logger.warning(f"Answering without a schema snapshot: {question!r}")
        elif snapshot.is_stale(self.schema_ttl):
            logger.warning(
                f"Answering with a stale schema snapshot from {snapshot.published_at.isoformat()}"
            )

        rules = self.lexicon.resolve(question)
        prompt = self.assembler.build(question, snapshot, rules)

        generated = GeneratedQuery(
            raw_text=await self.generator.generate(prompt), question=question
        )
        validated = self.guard.validate(generated.raw_text, question=generated.question)
        logger.info(f"Generated SQL for {question!r}: {validated.sql}")

        rows = await self.executor.run(validated.sql)
        return await self.shaper.shape(rows, question, validated.sql, with_chart=with_chart)

    async def refresh(self) -> Dict[str, Any]:
        """Refresh the schema; a failure keeps the current snapshot."""
        try:
            snapshot = await self.store.refresh()
        except SourceUnavailable as error:
            logger.error(f"Schema refresh failed: {error}")
            return {
                "success": False,
                "columns": len(self.store.current()),
                "error": error.message,
            }
        return {"success": True, "columns": len(snapshot)}

    def schema_status(self) -> Dict[str, Any]:
        snapshot = self.store.current()
        published_at: Optional[datetime] = snapshot.published_at
        return {
            "initialized": snapshot.is_initialized,
            "published_at": published_at,
            "stale": snapshot.is_stale(self.schema_ttl),
            "tables": len(snapshot.tables()),
            "columns": len(snapshot),
        }


def build_service() -> NLQueryService:
    """Wire the service from settings and the shared database engine."""
    store = SchemaStore(
        SqlCatalogSource(
            AsyncSessionLocal,
            schema=settings.CATALOG_SCHEMA,
            timeout=settings.CATALOG_TIMEOUT_SECONDS,
        ),
        cache_path=Path(settings.SCHEMA_CACHE_PATH),
        retry_after=timedelta(seconds=settings.SCHEMA_RETRY_SECONDS),
    )
    lexicon_path = Path(settings.LEXICON_PATH) if settings.LEXICON_PATH else None
    generator = create_generator(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        model=settings.OPENAI_MODEL,
        temperature=settings.GENERATION_TEMPERATURE,
        timeout=settings.GENERATION_TIMEOUT_SECONDS,
        retries=settings.GENERATION_RETRIES,
    )
    executor = QueryExecutor(
        engine,
        timeout=settings.EXECUTION_TIMEOUT_SECONDS,
        read_only=settings.EXECUTION_READ_ONLY,
    )
    shaper = ResultShaper(
        max_rows=settings.MAX_RESULT_ROWS,
        chart_renderer=MatplotlibChartRenderer(
            Path(settings.CHART_DIR), max_files=settings.CHART_MAX_FILES
        ),
    )
    return NLQueryService(
        store=store,
        lexicon=DomainLexicon.from_file(lexicon_path),
        generator=generator,
        executor=executor,
        shaper=shaper,
        schema_ttl=timedelta(hours=settings.SCHEMA_TTL_HOURS),
    )


_service: Optional[NLQueryService] = None


# Process-wide service, built on first use
def get_query_service() -> NLQueryService:
    global _service
    if _service is None:
        _service = build_service()
    return _service
