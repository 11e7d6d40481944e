"""
FastAPI entrypoint for the Monday Calculator service.
"""
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import monday
from .auth import AuthorizationFailure, Session, require_session
from .calculator import execute_multiplication
from .config import (
    MONDAY_SIGNING_SECRET, CALCULATE_RATE_LIMIT, PORT,
    ITEM_HISTORY_LIMIT, BOARD_HISTORY_LIMIT, ALL_HISTORY_LIMIT, MAX_HISTORY_LIMIT,
    LOG_FILE, LOG_MAX_BYTES, LOG_BACKUP_COUNT,
)
from .monday import MondayClient
from .payloads import ValidationFailure, normalize_payload
from .store import CalculationStore, get_calculation_store
from .transformation import TRANSFORMATION_TYPES, execute_transformation, parse_transformation_payload

# Attributes present on every LogRecord, excluded from the JSON extras dict
_LOG_RECORD_BUILTIN_ATTRS = {
    'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename',
    'funcName', 'levelname', 'levelno', 'lineno', 'message', 'module',
    'msecs', 'msg', 'name', 'pathname', 'process', 'processName',
    'relativeCreated', 'stack_info', 'thread', 'threadName', 'taskName',
}


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON for machine-readable file output."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        # Merge any extra={} fields passed by the caller
        for key, val in record.__dict__.items():
            if key not in _LOG_RECORD_BUILTIN_ATTRS and key not in entry:
                entry[key] = val
        return json.dumps(entry, default=str)


# Console handler: human-readable
_console_handler = logging.StreamHandler()
_console_handler.setFormatter(
    logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
)

# File handler: JSON, rotated at LOG_MAX_BYTES
_file_handler = RotatingFileHandler(
    LOG_FILE, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding='utf-8'
)
_file_handler.setFormatter(JSONFormatter())

logging.basicConfig(level=logging.INFO, handlers=[_console_handler, _file_handler])
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    # Startup
    logger.info("Starting Monday Calculator")

    if not MONDAY_SIGNING_SECRET:
        logger.warning("MONDAY_SIGNING_SECRET is not set; every authenticated request will be rejected")

    store = get_calculation_store()
    logger.info(f"Calculation log ready at {store.database_url}")

    yield
    # Shutdown
    store.engine.dispose()


# Rate limiter
limiter = Limiter(key_func=get_remote_address)

# Initialize FastAPI app
app = FastAPI(
    title="Monday Calculator",
    description="Multiplies monday.com item columns and keeps a calculation history",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=429, content={"message": f"Rate limit exceeded: {exc.detail}"})


@app.exception_handler(AuthorizationFailure)
async def authorization_failure_handler(request: Request, exc: AuthorizationFailure):
    return JSONResponse(status_code=401, content={"message": "Unauthorized"})


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure):
    return JSONResponse(status_code=400, content={"message": exc.message, "fields": exc.fields})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
    return JSONResponse(status_code=400, content={"message": "Invalid request", "fields": fields})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every HTTP request with method, path, status code, and duration."""
    start_time = time.time()
    response = await call_next(request)
    duration_ms = round((time.time() - start_time) * 1000, 2)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_monday_client(session: Session = Depends(require_session)) -> MondayClient:
    """Build a monday.com client scoped to the caller's short-lived token."""
    return monday.create_client(session.short_lived_token)


# Request/Response models
class SubscribeRequest(BaseModel):
    """Request model for webhook subscription."""
    model_config = ConfigDict(populate_by_name=True)

    webhook_url: str = Field(..., alias="webhookUrl", min_length=1, description="URL monday.com should call")
    event: str = Field("change_column_value", description="monday.com webhook event type")
    board_id: str = Field(..., alias="boardId", min_length=1, description="Board to watch")
    column_id: Optional[str] = Field(None, alias="columnId", description="Restrict to one column")


class UnsubscribeRequest(BaseModel):
    """Request model for webhook removal."""
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(..., alias="subscriptionId", min_length=1)


class WebhookEvent(BaseModel):
    """The ``event`` object of a monday.com webhook delivery."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    board_id: Optional[int] = Field(None, alias="boardId")
    pulse_id: Optional[int] = Field(None, alias="pulseId")
    column_id: Optional[str] = Field(None, alias="columnId")
    value: Optional[Any] = None


class HealthResponse(BaseModel):
    """Response model for health check."""
    ok: bool
    message: str


class ItemHistoryResponse(BaseModel):
    itemId: str
    count: int
    history: List[Dict[str, Any]]


class BoardHistoryResponse(BaseModel):
    boardId: str
    count: int
    history: List[Dict[str, Any]]


class PaginatedHistoryResponse(BaseModel):
    """One page of the full calculation history."""
    data: List[Dict[str, Any]]
    total: int
    page: int
    limit: int


# Endpoints
@app.get("/", response_model=HealthResponse)
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness check."""
    return HealthResponse(ok=True, message="Healthy")


@app.post("/execute-multiplication")
@app.post("/calculate")
@limiter.limit(CALCULATE_RATE_LIMIT)
def execute_multiplication_endpoint(
    request: Request,
    body: Any = Body(None),
    session: Session = Depends(require_session),
    client: MondayClient = Depends(get_monday_client),
    store: CalculationStore = Depends(get_calculation_store),
):
    """
    Multiply two columns of an item and write the product back.

    Accepts an action payload, an automation trigger payload or the flat
    body posted by the item view.
    """
    request_id = uuid.uuid4().hex[:8]

    try:
        calculation_request = normalize_payload(body)
        logger.info(
            f"[{request_id}] Multiplication requested ({calculation_request.origin.value})",
            extra={"request_id": request_id, **calculation_request.identifiers()},
        )
        outcome = execute_multiplication(client, store, session, calculation_request)

    except ValidationFailure as e:
        logger.warning(f"[{request_id}] Multiplication rejected: {e.message}",
                       extra={"request_id": request_id, "fields": e.fields})
        raise
    except Exception:
        logger.exception(f"[{request_id}] Multiplication failed",
                         extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="internal server error")

    logger.info(
        f"[{request_id}] {outcome.source_value} * {outcome.factor_value} = {outcome.result} "
        f"-> item {outcome.item_id} column {outcome.target_column_id}",
        extra={
            "request_id": request_id,
            "item_id": outcome.item_id,
            "board_id": outcome.board_id,
            "result": outcome.result,
            "logged": outcome.logged,
        },
    )
    if not outcome.logged:
        logger.warning(f"[{request_id}] Result written but calculation log append failed",
                       extra={"request_id": request_id})

    return outcome.to_response()


@app.post("/execute-action")
def execute_action_endpoint(
    body: Any = Body(None),
    client: MondayClient = Depends(get_monday_client),
):
    """
    Change the case of a text column and write it to another column.

    Answers an empty object both when the text was written and when the
    source column was empty.
    """
    request_id = uuid.uuid4().hex[:8]

    try:
        fields = parse_transformation_payload(body)
        outcome = execute_transformation(client, fields)

    except ValidationFailure as e:
        logger.warning(f"[{request_id}] Transformation rejected: {e.message}",
                       extra={"request_id": request_id, "fields": e.fields})
        raise
    except Exception:
        logger.exception(f"[{request_id}] Transformation failed",
                         extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="internal server error")

    if outcome.written:
        logger.info(
            f"[{request_id}] Transformed text -> item {outcome.item_id} column {outcome.target_column_id}",
            extra={"request_id": request_id, "item_id": outcome.item_id},
        )
    return {}


@app.post("/get-remote-list-options")
def remote_list_options_endpoint(session: Session = Depends(require_session)):
    """Options of the transformation type dropdown."""
    return TRANSFORMATION_TYPES


@app.get("/item/{item_id}/calculations", response_model=ItemHistoryResponse)
def item_history_endpoint(
    item_id: str,
    limit: int = Query(ITEM_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    session: Session = Depends(require_session),
    store: CalculationStore = Depends(get_calculation_store),
):
    """Calculation history of one item, newest first."""
    history = store.get_history_for_item(item_id, limit=limit)
    return ItemHistoryResponse(itemId=item_id, count=len(history), history=history)


@app.get("/board/{board_id}/calculations", response_model=BoardHistoryResponse)
def board_history_endpoint(
    board_id: str,
    limit: int = Query(BOARD_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    session: Session = Depends(require_session),
    store: CalculationStore = Depends(get_calculation_store),
):
    """Calculation history of one board, newest first."""
    history = store.get_history_for_board(board_id, limit=limit)
    return BoardHistoryResponse(boardId=board_id, count=len(history), history=history)


@app.get("/calculations", response_model=PaginatedHistoryResponse)
def all_history_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(ALL_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    account_id: Optional[str] = Query(None, alias="accountId"),
    session: Session = Depends(require_session),
    store: CalculationStore = Depends(get_calculation_store),
):
    """
    Page through every logged calculation.

    Filters by the accountId query parameter, else by the session's
    account. With neither, records of all accounts are returned.
    """
    account_id = account_id or session.account_id
    return store.get_all_history(limit=limit, page=page, account_id=account_id)


@app.get("/item/{item_id}/columns")
def item_columns_endpoint(
    item_id: str,
    client: MondayClient = Depends(get_monday_client),
):
    """Current column values of an item together with its board."""
    board_id = monday.get_board_id_for_item(client, item_id)
    if not board_id:
        raise HTTPException(status_code=400, detail="Could not find board ID for the item")

    column_values = monday.get_all_column_values_for_item(client, item_id) or []
    return {"boardId": board_id, "itemId": item_id, "columnValues": column_values}


@app.post("/subscribe")
def subscribe_endpoint(
    body: SubscribeRequest,
    client: MondayClient = Depends(get_monday_client),
):
    """Register a monday.com webhook for a board."""
    subscription_id = monday.create_subscription(
        client, body.webhook_url, body.event, body.board_id, column_id=body.column_id
    )
    if not subscription_id:
        raise HTTPException(status_code=500, detail="Failed to create subscription")

    logger.info(f"Created {body.event} subscription {subscription_id} on board {body.board_id}")
    return {"success": True, "subscriptionId": subscription_id}


@app.post("/unsubscribe")
def unsubscribe_endpoint(
    body: UnsubscribeRequest,
    client: MondayClient = Depends(get_monday_client),
):
    """Remove a monday.com webhook."""
    if not monday.delete_subscription(client, body.subscription_id):
        raise HTTPException(status_code=500, detail="Failed to delete subscription")

    logger.info(f"Deleted subscription {body.subscription_id}")
    return {"success": True}


@app.get("/subscriptions")
def subscriptions_endpoint(
    board_id: str = Query(..., alias="boardId", min_length=1),
    client: MondayClient = Depends(get_monday_client),
):
    """List the webhooks registered on a board."""
    subscriptions = monday.list_subscriptions(client, board_id)
    if subscriptions is None:
        raise HTTPException(status_code=500, detail="Failed to list subscriptions")
    return {"subscriptions": subscriptions}


@app.post("/webhook")
async def webhook_endpoint(request: Request):
    """
    Receive monday.com webhook deliveries.

    Answers the URL verification challenge. Event deliveries are only
    validated and logged: nothing is recalculated or stored for them.
    Every delivery is acknowledged with success, even when it cannot be
    parsed, so monday.com does not redeliver it.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhook delivery with a non-JSON body")
        return {"success": True}

    if isinstance(body, dict) and "challenge" in body:
        logger.info("Answering webhook challenge")
        return {"challenge": body["challenge"]}

    try:
        event = WebhookEvent.model_validate(body.get("event") if isinstance(body, dict) else None)
        logger.info(
            f"Webhook event {event.type} on board {event.board_id} item {event.pulse_id}",
            extra={
                "event_type": event.type,
                "board_id": event.board_id,
                "pulse_id": event.pulse_id,
                "column_id": event.column_id,
            },
        )
    except ValidationError as e:
        logger.error(f"Could not process webhook delivery: {e}")

    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
