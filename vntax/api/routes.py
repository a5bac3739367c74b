"""
API routes for the tax service
"""

from fastapi import APIRouter
from pydantic import BaseModel

from .rules import router as rules_router
from .tax import router as tax_router

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    service: str


@router.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint"""
    return HealthResponse(status="healthy", service="VN Tax Core")

# Include rule store routes
router.include_router(rules_router, tags=["rules"])
# Include tax calculation routes
router.include_router(tax_router, tags=["tax"])
