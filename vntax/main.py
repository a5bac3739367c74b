"""
VN Tax Core - Main Application Entry Point
Rules engine and tax calculators behind a small HTTP API
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import router
from .core.config import get_settings
from .core.errors import TaxInputError
from .database.connection import get_db_manager
from .database.rule_store import RulesPopulator, SQLiteRuleRepository
from .rules.repository import RuleRepository

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# Global rule store
rule_repository: Optional[RuleRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    global rule_repository

    # Startup
    logger.info("VN Tax Core starting up...")
    db = get_db_manager(settings.db_path)
    await db.connect()
    repository = SQLiteRuleRepository(db)
    if settings.seed_default_rules:
        await RulesPopulator(repository).populate_default_rules()
    rule_repository = repository

    yield

    # Shutdown
    rule_repository = None
    await db.disconnect()
    logger.info("Shutdown complete")


app = FastAPI(
    title="VN Tax Core",
    description="Vietnamese VAT, CIT and PIT rules engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log failed HTTP requests"""
    response = await call_next(request)
    if response.status_code >= 400:
        logger.error(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )
    return response


@app.exception_handler(TaxInputError)
async def tax_input_exception_handler(request: Request, exc: TaxInputError):
    """Malformed caller input (bad period, missing field) -> 400"""
    logger.warning(f"Invalid input on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message, "field": exc.field}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Log HTTP exceptions"""
    logger.error(
        f"HTTP {exc.status_code}: {exc.detail}\n"
        f"Request: {request.method} {request.url.path}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors"""
    logger.error(
        f"Validation error (422): {exc.errors()}\n"
        f"Request: {request.method} {request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors()), "body": "Validation failed"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}\n"
        f"Request: {request.method} {request.url.path}\n"
        f"Traceback: {traceback.format_exc()}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"status": "ok", "service": "VN Tax Core"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("vntax.main:app", host="127.0.0.1", port=8000, reload=True)
