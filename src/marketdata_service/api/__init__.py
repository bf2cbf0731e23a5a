"""API router definitions for the market data service."""

from fastapi import APIRouter

from .routes import router as market_data_router

api_router = APIRouter()
api_router.include_router(market_data_router, prefix="/market-data", tags=["market-data"])

__all__ = ["api_router"]
