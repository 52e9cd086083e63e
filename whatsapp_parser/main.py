"""FastAPI entry point exposing the WhatsApp parser service.

GET / (health), POST /messages/parse, POST /messages/process,
GET /extractions, GET /extractions/stats, PATCH /extractions/{id},
POST /training.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from whatsapp_parser import config
from whatsapp_parser.auth import current_user_id, verify_api_key
from whatsapp_parser.errors import (
    InvalidInput,
    NotFound,
    ParserError,
    QuotaExceeded,
    StoreUnavailable,
)
from whatsapp_parser.models import (
    Category,
    ExtractionResult,
    InboundMessage,
    ProcessResult,
    StatsSummary,
    StoredExtraction,
)
from whatsapp_parser.service import ParserService
from whatsapp_parser.store import InMemoryStore

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_ERROR_STATUS: Dict[type, int] = {
    InvalidInput: 422,
    QuotaExceeded: 429,
    NotFound: 404,
    StoreUnavailable: 503,
}


def build_service() -> ParserService:
    """Wire the service against the configured store backend."""
    if config.STORE_BACKEND == "supabase":
        from whatsapp_parser.supabase_store import (
            SupabaseClient,
            SupabaseOrderCreator,
            SupabaseStore,
        )
        client = SupabaseClient()
        return ParserService(SupabaseStore(client), SupabaseOrderCreator(client))
    return ParserService(InMemoryStore())


app = FastAPI(
    title="PocketMoney WhatsApp Parser API",
    description="Order, payment and delivery extraction from WhatsApp chat messages",
    version="1.0.0",
)
app.state.service = build_service()


def get_service(request: Request) -> ParserService:
    return request.app.state.service


@app.on_event("startup")
async def _on_startup() -> None:
    logger.info(
        f"WhatsApp Parser API v1.0.0 started | store={config.STORE_BACKEND} | Docs: /docs"
    )


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    logger.warning(f"422 InvalidInput | {request.url.path} | {len(errors)} field error(s)")
    return JSONResponse(
        status_code=422,
        content={
            "kind": "InvalidInput",
            "message": "Request is not a valid WhatsApp parser payload.",
            "detail": errors,
        },
    )


@app.exception_handler(ParserError)
async def _parser_error_handler(request: Request, exc: ParserError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), 500)
    logger.warning(f"{status_code} {exc.kind} | {request.url.path} | {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/")
async def health_check() -> dict:
    return {
        "status": "online",
        "service": "PocketMoney WhatsApp Parser API",
        "version": "1.0.0",
    }


@app.post("/messages/parse", response_model=ExtractionResult)
async def parse_message(
    message: InboundMessage,
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> ExtractionResult:
    return await service.parse_message(user_id, message)


@app.post("/messages/process", response_model=ProcessResult)
async def process_message(
    message: InboundMessage,
    auto_create: bool = Query(default=False),
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> ProcessResult:
    return await service.process_and_maybe_create_order(user_id, message, auto_create)


@app.get("/extractions", response_model=List[StoredExtraction])
async def list_extractions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    category: Optional[Category] = Query(default=None),
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> List[StoredExtraction]:
    if category is not None:
        return await service.get_extractions_by_type(user_id, category, limit, offset)
    return await service.get_extraction_history(user_id, limit, offset)


@app.get("/extractions/stats", response_model=StatsSummary)
async def extraction_stats(
    days: int = Query(default=30, ge=1, le=366),
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> StatsSummary:
    return await service.get_stats(user_id, days)


@app.patch("/extractions/{extraction_id}", response_model=StoredExtraction)
async def correct_extraction(
    extraction_id: str,
    corrections: Dict[str, Any],
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> StoredExtraction:
    return await service.apply_manual_correction(extraction_id, corrections, user_id)


@app.post("/training")
async def train_parser(
    api_key: str = Depends(verify_api_key),
    user_id: str = Depends(current_user_id),
    service: ParserService = Depends(get_service),
) -> dict:
    return {"samples": await service.train_with_corrections(user_id)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
