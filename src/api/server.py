"""
CREDIT RAIL - Production FastAPI Server

Credit accounting API for costed (AI-backed) operations.

Endpoints:
- GET  /health - Liveness
- GET  /catalog - Service costs and quota limits
- POST /accounts - Provision an account with its starting grant
- GET  /credits/{user_id} - Balance and quota status
- POST /credits/{user_id}/grant - Add credits
- POST /credits/{user_id}/deduct - Check and deduct for one service call
- POST /usage/{user_id} - Record a completed service call
- GET  /usage/{user_id} - Per-service usage counts
- GET  /admin/credits - Accounts ranked by balance with totals
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import os
import structlog

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from billing.ledger import CreditLedger, LedgerConfig
from billing.usage import UsageRecorder
from core.account import AccountRole
from core.catalog import CostCatalog
from core.clock import Clock, SystemClock
from core.errors import (
    AccountNotFoundError,
    InvalidAmountError,
    LedgerUnavailableError,
    UnknownServiceError,
)
from persistence.database import Database
from persistence.repository import AccountRepository, UsageStatRepository

logger = structlog.get_logger()

VERSION = "1.0.0"


# ============================================================================
# Pydantic Models
# ============================================================================

class ProvisionRequest(BaseModel):
    """Request to open a credit account."""
    user_id: str = Field(..., min_length=1, description="User identifier")
    role: str = Field(default="USER", description="USER or ADMIN (decides the starting grant)")


class GrantRequest(BaseModel):
    """Request to add credits."""
    amount: int = Field(..., description="Credits to add, must be positive")


class ServiceRequest(BaseModel):
    """A costed service invocation."""
    service_type: str = Field(..., description="Service type from the cost catalog")


class SnapshotResponse(BaseModel):
    """Balance and quota status."""
    user_id: str
    balance: int
    daily_used: int
    monthly_used: int
    daily_remaining: int
    monthly_remaining: int
    daily_limit: int
    monthly_limit: int


class DeductResponse(BaseModel):
    """Outcome of a check-and-deduct."""
    allowed: bool
    failure: Optional[str]
    service_type: str
    cost: int
    snapshot: SnapshotResponse


class GrantResponse(BaseModel):
    user_id: str
    new_balance: int
    created: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: float


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container."""

    def __init__(self, database_url: Optional[str] = None, clock: Optional[Clock] = None):
        self.catalog = CostCatalog.from_env()
        self.clock = clock or SystemClock()
        self.db = Database(database_url)
        self.db.initialize()
        self.ledger = CreditLedger(
            store=AccountRepository(self.db),
            catalog=self.catalog,
            clock=self.clock,
            config=LedgerConfig.from_env(),
        )
        self.usage = UsageRecorder(
            store=UsageStatRepository(self.db),
            catalog=self.catalog,
            clock=self.clock,
        )
        self.start_time = datetime.now(timezone.utc)

    def close(self) -> None:
        self.db.close()


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    logger.info("credit_rail_starting", version=VERSION)
    app_state = AppState()
    yield
    app_state.close()
    logger.info("credit_rail_stopping")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Credit Rail",
        description="""
# Credit Accounting for Costed Operations

**NO CHARGE, NO RUN** - Every AI-backed operation is gated by an atomic credit deduction.

## Features
- **Prepaid balance**: abstract credits, granted and spent
- **Daily / monthly quotas**: UTC calendar windows, reset lazily on next access
- **No double-spend**: optimistic concurrency with bounded retry
- **Usage statistics**: best-effort per-service counters
        """,
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(AccountNotFoundError)
    async def account_not_found_handler(request: Request, exc: AccountNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc), "error": "ACCOUNT_NOT_FOUND"})

    @application.exception_handler(UnknownServiceError)
    async def unknown_service_handler(request: Request, exc: UnknownServiceError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "error": "UNKNOWN_SERVICE"})

    @application.exception_handler(InvalidAmountError)
    async def invalid_amount_handler(request: Request, exc: InvalidAmountError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "error": "INVALID_AMOUNT"})

    @application.exception_handler(LedgerUnavailableError)
    async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError):
        return JSONResponse(status_code=503, content={"detail": str(exc), "error": "LEDGER_UNAVAILABLE"})

    return application


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    """Verify API key."""
    expected = os.environ.get("API_KEY", "dev-key-change-in-production")
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=uptime,
    )


@app.get("/catalog", tags=["Credits"])
async def get_catalog(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Service costs, quota limits and starting grants."""
    return state.catalog.to_dict()


@app.post("/accounts", tags=["Credits"])
def provision_account(
    request: ProvisionRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Open a credit account with the role's starting grant.

    An existing account is left as it is (first write wins).
    """
    try:
        role = AccountRole[request.role.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Invalid role: {request.role}")

    result = state.ledger.provision(request.user_id, role)
    return {
        "created": result.created,
        "account": result.snapshot.to_dict(),
    }


@app.get("/credits/{user_id}", response_model=SnapshotResponse, tags=["Credits"])
def get_credits(
    user_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Balance and quota status. Applies any pending window reset."""
    return state.ledger.status(user_id).to_dict()


@app.post("/credits/{user_id}/grant", response_model=GrantResponse, tags=["Credits"])
def grant_credits(
    user_id: str,
    request: GrantRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Add credits, creating the account if needed."""
    result = state.ledger.grant(user_id, request.amount)
    return GrantResponse(user_id=result.user_id, new_balance=result.new_balance, created=result.created)


@app.post("/credits/{user_id}/deduct", response_model=DeductResponse, tags=["Credits"])
def deduct_credits(
    user_id: str,
    request: ServiceRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Check and deduct credits for one invocation.

    Rejections (insufficient balance, daily or monthly limit) are returned
    with allowed=false. The caller runs the service only when allowed=true
    and then reports it via POST /usage/{user_id}.
    """
    return state.ledger.check_and_deduct(user_id, request.service_type).to_dict()


@app.post("/usage/{user_id}", tags=["Usage"])
def record_usage(
    user_id: str,
    request: ServiceRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Record a completed service call. Never fails the request."""
    stat = state.usage.record(user_id, request.service_type)
    return {
        "recorded": stat is not None,
        "count": stat.count if stat else None,
    }


@app.get("/usage/{user_id}", tags=["Usage"])
def get_usage(
    user_id: str,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Per-service invocation counts."""
    return {
        "user_id": user_id,
        "usage": state.usage.stats(user_id),
    }


@app.get("/admin/credits", tags=["Admin"])
def admin_credits(
    limit: int = 50,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Accounts ranked by balance with ledger-wide totals."""
    return state.ledger.overview(limit=min(max(limit, 1), 1000))


# ============================================================================
# Run
# ============================================================================

def run():
    """Run the server."""
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "api.server:app",
        host="0.0.0.0",
        port=port,
        reload=os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
