"""API v1 router aggregation."""

from fastapi import APIRouter

from billpay.api.v1 import catalog, gateway, transactions

api_router = APIRouter()

# Include routers
api_router.include_router(catalog.router, tags=["Catalog"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
api_router.include_router(gateway.router, prefix="/gateway", tags=["Gateway"])
