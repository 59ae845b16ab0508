"""Aggregate API router."""

from fastapi import APIRouter

from . import draw, products, rates, verify

api_router = APIRouter()

api_router.include_router(verify.router, prefix="/verify", tags=["verify"])
api_router.include_router(draw.router, prefix="/draw", tags=["draw"])
api_router.include_router(rates.router, prefix="/rates", tags=["rates"])
api_router.include_router(products.router, prefix="/products", tags=["products"])
