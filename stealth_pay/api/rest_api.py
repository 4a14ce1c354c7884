"""
StealthPay - REST API
=======================
API del facilitator x402 e feed di scanning.

Security Level: MEDIUM
Last Updated: 2026-10-19
Version: 1.0.0

Endpoints:
- /settlement/* - Info e statistiche settlement
- /payments/* - Settlement di un header X-PAYMENT, receipts
- /announcements - Feed paginato per gli scanner
- /agents/* - Stato agent
- /registry/* - Meta-address registrati
- /payment-requirement - Istruzioni di pagamento 402
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stealth_pay.config import StealthPaySettings
from stealth_pay.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PROJECT_NAME,
    SOFTWARE_VERSION,
    X402_VERSION,
    get_protocol_info,
)
from stealth_pay.domain.addressing import is_valid_address
from stealth_pay.errors import (
    AuthorizationError,
    DuplicateAnnouncement,
    InsufficientFunds,
    PolicyError,
    ReplayDetected,
    SettlementPaused,
    StealthPayException,
    UnauthorizedCaller,
)
from stealth_pay.logging_setup import get_logger
from stealth_pay.protocol.x402 import PaymentRequirement, decode_payment_header
from stealth_pay.services.meta_registry import StealthMetaRegistry
from stealth_pay.services.settlement import PaymentSettlement
from stealth_pay.api.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("api")


# ============================================================================
# PYDANTIC MODELS (Request/Response)
# ============================================================================

class SettleRequest(BaseModel):
    """Settlement request: header X-PAYMENT base64"""
    payment_header: str = Field(..., min_length=1)


class AnnouncementResponse(BaseModel):
    """Announcement nel feed"""
    index: int
    scheme_id: int
    stealth_address: str
    caller: str
    ephemeral_pub_key: str
    view_tag: int
    metadata: str
    timestamp: int


class AnnouncementPage(BaseModel):
    offset: int
    limit: int
    total: int
    announcements: List[AnnouncementResponse]


# ============================================================================
# API STATE
# ============================================================================

class APIState:
    """Global API state"""
    settlement: Optional[PaymentSettlement] = None
    registry: Optional[StealthMetaRegistry] = None
    config: Optional[StealthPaySettings] = None


state = APIState()


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_settlement() -> PaymentSettlement:
    """Dependency: get settlement"""
    if state.settlement is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Settlement not initialized"
        )
    return state.settlement


def get_registry() -> StealthMetaRegistry:
    if state.registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Registry not initialized"
        )
    return state.registry


def get_config() -> StealthPaySettings:
    if state.config is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Configuration not initialized"
        )
    return state.config


def validate_address(address: str) -> str:
    """Path parameter address -> 400 se malformato"""
    if not is_valid_address(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid address format: {address}"
        )
    return address


def validate_nonce(nonce: str) -> bytes:
    text = nonce[2:] if nonce[:2].lower() == "0x" else nonce
    try:
        raw = bytes.fromhex(text)
        if len(raw) != 32:
            raise ValueError("Nonce must be 32 bytes")
        return raw
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid nonce: {e}"
        )


# ============================================================================
# ERROR MAPPING
# ============================================================================

# Ordine rilevante: prima le sottoclassi
ERROR_STATUS_MAP = (
    (UnauthorizedCaller, status.HTTP_403_FORBIDDEN),
    (ReplayDetected, status.HTTP_409_CONFLICT),
    (DuplicateAnnouncement, status.HTTP_409_CONFLICT),
    (AuthorizationError, status.HTTP_402_PAYMENT_REQUIRED),
    (InsufficientFunds, status.HTTP_402_PAYMENT_REQUIRED),
    (PolicyError, status.HTTP_403_FORBIDDEN),
    (SettlementPaused, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_exception(exc: StealthPayException) -> int:
    for exc_type, status_code in ERROR_STATUS_MAP:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def stealthpay_exception_handler(request: Request, exc: StealthPayException) -> JSONResponse:
    status_code = status_for_exception(exc)
    logger.warning(
        f"Request rejected: {exc.code}",
        extra_data={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "status": status_code,
        }
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ============================================================================
# ROUTES
# ============================================================================

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": f"{PROJECT_NAME} API",
        "version": SOFTWARE_VERSION,
        "x402Version": X402_VERSION,
        "status": "running",
    }


@router.get("/settlement/info")
async def get_settlement_info(settlement: PaymentSettlement = Depends(get_settlement)):
    """Configurazione e statistiche del settlement"""
    return {
        "protocol": get_protocol_info(),
        "settlement": settlement.info(),
        "stats": settlement.stats(),
    }


@router.post("/payments/settle")
async def settle_payment(
    request: Request,
    body: Optional[SettleRequest] = None,
    x_payment: Optional[str] = Header(default=None),
    settlement: PaymentSettlement = Depends(get_settlement),
):
    """
    Settle di un header X-PAYMENT (nel body o come header HTTP).
    """
    raw_header = body.payment_header if body is not None else x_payment
    if not raw_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing payment header"
        )

    header = decode_payment_header(raw_header)
    authorization = header.to_authorization(settlement.address)
    client_ip = request.client.host if request.client else None

    receipt = settlement.process_payment(
        authorization,
        header.stealth_address,
        header.ephemeral_pub_key_bytes,
        header.view_tag,
        caller=client_ip,
    )
    return {"status": "settled", "receipt": receipt.to_dict()}


@router.get("/payments/{payer}/{nonce}")
async def get_payment(
    payer: str,
    nonce: str,
    settlement: PaymentSettlement = Depends(get_settlement),
):
    """Receipt di un pagamento (payer, nonce)"""
    validate_address(payer)
    nonce_bytes = validate_nonce(nonce)

    receipt = settlement.get_receipt(payer, nonce_bytes)
    if receipt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return {
        "processed": settlement.is_processed(payer, nonce_bytes),
        "receipt": receipt.to_dict(),
    }


@router.get("/announcements", response_model=AnnouncementPage)
async def list_announcements(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    scheme_id: Optional[int] = Query(default=None),
    settlement: PaymentSettlement = Depends(get_settlement),
):
    """Feed announcement paginato in ordine di inserimento"""
    page = settlement.announcer.page(offset=offset, limit=limit, scheme_id=scheme_id)
    return AnnouncementPage(
        offset=offset,
        limit=limit,
        total=settlement.announcer.announcement_count,
        announcements=[AnnouncementResponse(**a.to_dict()) for a in page],
    )


@router.get("/announcements/count")
async def count_announcements(settlement: PaymentSettlement = Depends(get_settlement)):
    return {"count": settlement.announcer.announcement_count}


@router.get("/agents/{address}")
async def get_agent(address: str, settlement: PaymentSettlement = Depends(get_settlement)):
    validate_address(address)
    if settlement.agents is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Agent ledger not configured"
        )

    agent = settlement.agents.get_agent(address)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent {address} not registered"
        )
    return agent.to_dict()


@router.get("/registry/{address}/{scheme_id}")
async def get_meta_address(
    address: str,
    scheme_id: int,
    registry: StealthMetaRegistry = Depends(get_registry),
):
    validate_address(address)
    meta = registry.stealth_meta_address_of(address, scheme_id)
    if not meta:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Meta-address not registered"
        )
    return {
        "registrant": address,
        "scheme_id": scheme_id,
        "meta_address": "0x" + meta.hex(),
    }


@router.get("/payment-requirement")
async def get_payment_requirement(
    amount: str = Query(..., min_length=1),
    receiver_meta_address: Optional[str] = Query(default=None, alias="receiverMetaAddress"),
    description: Optional[str] = Query(default=None),
    config: StealthPaySettings = Depends(get_config),
) -> Dict[str, Any]:
    """Corpo della risposta 402 costruito dalla configurazione"""
    requirement = PaymentRequirement.from_settings(
        config,
        amount=amount,
        receiver_meta_address=receiver_meta_address,
        description=description,
    )
    return requirement.to_402_body()


# ============================================================================
# FASTAPI APP
# ============================================================================

def create_app(cors_origins: Optional[List[str]] = None) -> FastAPI:
    """
    Costruisce l'app FastAPI con middleware e routes.

    Args:
        cors_origins: Origini CORS ammesse (None = CORS disabilitato)
    """
    application = FastAPI(
        title=f"{PROJECT_NAME} API",
        description="x402 stealth payment facilitator",
        version=SOFTWARE_VERSION,
    )

    if cors_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID", "X-Process-Time"],
        )

    # Ultimo aggiunto = più esterno
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(RequestIDMiddleware)

    application.add_exception_handler(StealthPayException, stealthpay_exception_handler)
    application.include_router(router)
    return application


app = create_app()


def initialize_api(
    settlement: PaymentSettlement,
    config: StealthPaySettings,
    registry: Optional[StealthMetaRegistry] = None,
) -> FastAPI:
    """
    Inizializza lo stato globale dell'API.

    Examples:
        >>> app = initialize_api(settlement, settings, registry)
    """
    state.settlement = settlement
    state.config = config
    state.registry = registry

    logger.info("API initialized and ready", extra_data={"settlement": settlement.address})
    return app


__all__ = [
    "app",
    "create_app",
    "initialize_api",
    "state",
    "status_for_exception",
]
