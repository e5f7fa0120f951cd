"""
FastAPI Router for Accounting Event Endpoints.

Provides REST API for:
- Listing sources with their modes and capabilities
- Fetching events for one source or a batch of sources
- Exporting reviewed events as CSV or JSON (gated by validation)

Errors are returned with a classified body so callers can tell
"try again later" from "can never be produced safely".
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Response

from accounting_events.config import load_config
from accounting_events.exceptions import (
    AccountingEventsError,
    AuthInvalidError,
    AuthRequiredError,
    BatchFetchError,
    ExportRefusedError,
    InsufficientDataError,
    InvalidInputError,
    MalformedPayloadError,
    NetworkError,
    RateLimitError,
    UpstreamError,
)
from accounting_events.exporter import CSV_CONTENT_TYPE, JSON_CONTENT_TYPE
from accounting_events.schemas import (
    BatchRequest,
    BatchResponse,
    EventsRequest,
    EventsResponse,
    ExportRequest,
    SourceDescriptorSchema,
)
from accounting_events.service import EventService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Accounting Events"])


# =============================================================
# HELPER: Service dependency
# =============================================================

@lru_cache(maxsize=1)
def get_event_service() -> EventService:
    return EventService.from_config(load_config())


# =============================================================
# HELPER: Error classification
# =============================================================

# Most specific first
_STATUS_MAP = (
    (InvalidInputError, 400),
    (AuthRequiredError, 401),
    (AuthInvalidError, 401),
    (InsufficientDataError, 422),
    (RateLimitError, 429),
    (UpstreamError, 502),
    (NetworkError, 502),
    (MalformedPayloadError, 502),
    (BatchFetchError, 502),
    (ExportRefusedError, 409),
)


def http_status_for(error: AccountingEventsError) -> int:
    """HTTP status for a classified error; contract violations are 500."""
    for error_class, status_code in _STATUS_MAP:
        if isinstance(error, error_class):
            return status_code
    return 500


def error_body(error: AccountingEventsError) -> Dict[str, Any]:
    """Classified error body."""
    if isinstance(error, ExportRefusedError):
        details: Optional[Dict[str, Any]] = {
            "validation_errors": [e.to_dict() for e in error.validation_errors],
        }
    elif isinstance(error, BatchFetchError):
        details = {
            "failures": {s: e.to_dict() for s, e in error.failures.items()},
        }
    else:
        details = error.context or None

    return {
        "error": error.message,
        "type": error.error_type,
        "retryable": error.retryable,
        "blocked_by_design": error.blocked_by_design,
        "user_action": error.user_action,
        "source_id": error.source_id,
        "details": details,
    }


def _raise_http(error: AccountingEventsError) -> None:
    status_code = http_status_for(error)
    if status_code >= 500:
        logger.error(f"Request failed: {error}")
    else:
        logger.info(f"Request rejected ({status_code}): {error}")
    raise HTTPException(status_code=status_code, detail=error_body(error))


# =============================================================
# SOURCE ENDPOINTS
# =============================================================

@router.get("/sources", response_model=List[SourceDescriptorSchema])
async def list_sources(service: EventService = Depends(get_event_service)):
    """List registered sources with their mode and capabilities."""
    return [SourceDescriptorSchema.from_descriptor(d) for d in service.list_sources()]


# =============================================================
# FETCH ENDPOINTS
# =============================================================

@router.post("", response_model=EventsResponse)
async def fetch_events(
    request: EventsRequest,
    service: EventService = Depends(get_event_service),
):
    """
    Fetch events for one source.

    Validation errors are part of the response, not a failure.
    """
    try:
        result = await service.events(request.source_id, request.account, request.credentials())
    except AccountingEventsError as e:
        _raise_http(e)
    return EventsResponse.from_result(result)


@router.post("/batch", response_model=BatchResponse)
async def fetch_batch(
    request: BatchRequest,
    service: EventService = Depends(get_event_service),
):
    """Fetch several sources concurrently and merge."""
    try:
        result = await service.batch_events(request.source_ids, request.account, request.credentials())
    except AccountingEventsError as e:
        _raise_http(e)
    return BatchResponse.from_result(result)


# =============================================================
# EXPORT ENDPOINTS
# =============================================================

@router.post("/export/csv")
async def export_csv(
    request: ExportRequest,
    service: EventService = Depends(get_event_service),
):
    """Export as CSV. Refused (409) while validation errors remain."""
    events = [e.to_event() for e in request.events]
    errors = [e.to_error() for e in request.validation_errors]
    try:
        content = service.export_csv(events, errors)
    except AccountingEventsError as e:
        _raise_http(e)
    return Response(
        content=content,
        media_type=CSV_CONTENT_TYPE,
        headers={"Content-Disposition": 'attachment; filename="events.csv"'},
    )


@router.post("/export/json")
async def export_json(
    request: ExportRequest,
    service: EventService = Depends(get_event_service),
):
    """Export as JSON. Refused (409) while validation errors remain."""
    events = [e.to_event() for e in request.events]
    errors = [e.to_error() for e in request.validation_errors]
    try:
        content = service.export_json(events, errors)
    except AccountingEventsError as e:
        _raise_http(e)
    return Response(content=content, media_type=JSON_CONTENT_TYPE)


def create_app(service: Optional[EventService] = None) -> FastAPI:
    """Application with the events router mounted."""
    app = FastAPI(title="Accounting Events", version="1.0.0")
    app.include_router(router)
    if service is not None:
        app.dependency_overrides[get_event_service] = lambda: service
    return app
