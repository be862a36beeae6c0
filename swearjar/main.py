"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging: configured once from settings
  2. Ledger wiring: the shared LedgerStore and settlement adapter on app.state
  3. Lifespan manager: creates tables on startup, disposes the engine on shutdown
  4. CORS middleware, exception handlers and routers

Running locally:
    uvicorn swearjar.main:app --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swearjar.config import settings
from swearjar.database import AsyncSessionLocal, Base, engine
from swearjar.exceptions import register_exception_handlers
from swearjar.logging_config import configure_logging, get_logger
from swearjar.routers import bank_accounts, jars, members, settlements, transactions
from swearjar.services.ledger_store import LedgerStore
from swearjar.services.settlement import LoggingSettlementAdapter

configure_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates all database tables if they don't exist (and the directory of
      a file-backed SQLite database).

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Shared swear-jar ledger: deposits, withdrawals, penalties and reversals",
    lifespan=lifespan,
)

# One store per process: it owns the per-jar lock registry
app.state.ledger_store = LedgerStore(AsyncSessionLocal)
app.state.settlement_adapter = LoggingSettlementAdapter()

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(jars.router, prefix="/jars", tags=["Jars"])
app.include_router(members.router, prefix="/jars", tags=["Members"])
app.include_router(transactions.router, tags=["Transactions"])
app.include_router(settlements.router, prefix="/settlements", tags=["Settlements"])
app.include_router(bank_accounts.router, prefix="/bank-accounts", tags=["Bank Accounts"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for deployment probes."""
    return {"status": "ok", "version": settings.APP_VERSION}
