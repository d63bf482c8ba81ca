import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.ai_feature.service import get_query_service
from app.ai_feature.shaper import CHART_URL_PREFIX
from app.api.router import api_router
from app.core.config import settings
from app.core.database import engine
from app.core.errors import NLQueryError, SourceUnavailable

logger = logging.getLogger(__name__)


# Warm the schema before serving and close the engine once everything is done
@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_query_service()
    service.store.load_cache()
    try:
        await service.store.refresh()
    except SourceUnavailable as e:
        logger.error(f"Schema refresh during startup failed: {e}")

    yield
    await engine.dispose()


app = FastAPI(title="Business Bot SQL API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)

chart_dir = Path(settings.CHART_DIR)
chart_dir.mkdir(parents=True, exist_ok=True)
app.mount(CHART_URL_PREFIX, StaticFiles(directory=chart_dir), name="charts")


# Every pipeline failure goes out as {"error": message}
@app.exception_handler(NLQueryError)
async def nl_query_error_handler(request: Request, exc: NLQueryError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [error.get("msg", "Invalid request") for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "; ".join(messages) or "Invalid request"},
    )


@app.get("/")
async def root():
    return {"message": "Business Bot API is live. POST /ai/query with {question: '...'}"}
