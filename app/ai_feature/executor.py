import asyncio
import logging
from typing import Any, Dict, List

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.errors import ExecutionFailed


logger = logging.getLogger(__name__)


class QueryExecutor:
    """
    Runs validated SQL and returns rows as column -> value mappings.

    Failures are reported with the backend's own message and never retried:
    a failing SELECT is almost always a wrong table or column, not a blip.
    """

    def __init__(self, engine: AsyncEngine, timeout: float = 30.0, read_only: bool = True):
        self.engine = engine
        self.timeout = timeout
        self.read_only = read_only

    async def _execute(self, sql: str) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            async with conn.begin():
                if self.read_only:
                    await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                # exec_driver_sql: the text goes to the driver untouched, no :param parsing
                result = await conn.exec_driver_sql(sql)
                if not result.returns_rows:
                    return []
                return [dict(row) for row in result.mappings().all()]

    async def run(self, sql: str) -> List[Dict[str, Any]]:
        try:
            return await asyncio.wait_for(self._execute(sql), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExecutionFailed(f"Query timed out after {self.timeout:g}s")
        except DBAPIError as error:
            # The driver's message is what the caller needs to see
            message = str(error.orig) if error.orig is not None else str(error)
            logger.error(f"Query execution failed: {message}")
            raise ExecutionFailed(message)
        except (SQLAlchemyError, OSError) as error:
            logger.error(f"Query execution failed: {error}")
            raise ExecutionFailed(str(error))
