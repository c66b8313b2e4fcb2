"""
FastAPI Router for Payment Intents.

- POST /payment-intents                 create a pledge
- GET  /payment-intents/{id}            intent status
- POST /payment-intents/{id}/verify     submit a candidate transaction

Engine errors map onto HTTP statuses through their error category.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import ErrorCategory, get_error_info
from .exceptions import (
    AlreadyTerminalError,
    CampaignClosedError,
    ChainClientError,
    ClaimConflictError,
    IntentEngineError,
    IntentNotFoundError,
    InvalidTransitionError,
    StaleIntentError,
)
from .schemas import (
    CreateIntentBody,
    ErrorResponse,
    IntentCreatedResponse,
    PaymentIntentResponse,
    VerificationResponse,
    VerifyBody,
)
from .service import PaymentIntentService
from .types import CreateIntentRequest


logger = logging.getLogger(__name__)


# =============================================================
# HELPER: Error mapping
# =============================================================

def http_status_for(error: IntentEngineError) -> int:
    if isinstance(error, IntentNotFoundError):
        return 404
    if isinstance(error, CampaignClosedError):
        return 403
    if isinstance(error, (AlreadyTerminalError, InvalidTransitionError, ClaimConflictError, StaleIntentError)):
        return 409
    category = get_error_info(error.code).category
    if category == ErrorCategory.INPUT:
        return 400
    if category == ErrorCategory.TRANSIENT or isinstance(error, ChainClientError):
        return 503
    return 500


async def engine_error_handler(request: Request, exc: IntentEngineError) -> JSONResponse:
    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    body = ErrorResponse(
        code=exc.code,
        message=exc.message,
        retryable=get_error_info(exc.code).is_retryable,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


# =============================================================
# ROUTER
# =============================================================

def create_router(service: PaymentIntentService) -> APIRouter:
    """Router bound to one service instance."""
    router = APIRouter(prefix="/payment-intents", tags=["Payment Intents"])

    def get_service() -> PaymentIntentService:
        return service

    @router.post("", response_model=IntentCreatedResponse, status_code=201)
    async def create_intent(
        body: CreateIntentBody,
        svc: PaymentIntentService = Depends(get_service),
    ):
        """Create a pledge and return its payment instructions."""
        created = await svc.create_intent(CreateIntentRequest(**body.model_dump()))
        return IntentCreatedResponse.from_created(created)

    @router.get("/{intent_id}", response_model=PaymentIntentResponse)
    async def get_intent(
        intent_id: str,
        svc: PaymentIntentService = Depends(get_service),
    ):
        intent = await svc.get_status(intent_id)
        return PaymentIntentResponse.from_intent(intent)

    @router.post("/{intent_id}/verify", response_model=VerificationResponse)
    async def verify_intent(
        intent_id: str,
        body: VerifyBody,
        svc: PaymentIntentService = Depends(get_service),
    ):
        """
        Verify a candidate transaction.

        Rejections are successful responses carrying a reason and a
        retryable flag; only unknown and terminal intents are errors.
        """
        result = await svc.verify(intent_id, body.tx_hash)
        return VerificationResponse.from_result(result)

    return router


def create_app(service: PaymentIntentService) -> FastAPI:
    """Application with the intent router and lifecycle hooks."""
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        yield
        await service.stop()

    app = FastAPI(title="Payment Intent Engine", lifespan=lifespan)
    app.include_router(create_router(service))
    app.add_exception_handler(IntentEngineError, engine_error_handler)
    return app
