from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.ai_feature.service import NLQueryService, get_query_service
from app.core import schemas

router = APIRouter(prefix="/ai", tags=["AI"])

service_dep = Annotated[NLQueryService, Depends(get_query_service)]


# Ask a question
@router.post("/query", status_code=status.HTTP_200_OK)
async def ask_question(payload: schemas.QueryRequest, service: service_dep):
    """
    Turn the question into a SELECT, run it and return up to
    MAX_RESULT_ROWS rows (plus a chart URL when one was asked for).
    """
    result = await service.answer(payload.question, with_chart=payload.chart)
    return result.to_response()


# Reload the schema snapshot
@router.get("/refresh", response_model=schemas.RefreshResponse)
async def refresh_schema(service: service_dep):
    outcome = await service.refresh()
    if not outcome["success"]:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=outcome
        )
    return outcome


# What the prompt currently knows about
@router.get("/schema", response_model=schemas.SchemaStatusResponse)
async def schema_status(service: service_dep):
    return service.schema_status()
