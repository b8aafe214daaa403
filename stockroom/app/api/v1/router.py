from fastapi import APIRouter

from stockroom.app.api.v1.endpoints.health import router as health_router
from stockroom.app.api.v1.endpoints.inventory import router as inventory_router
from stockroom.app.api.v1.endpoints.stock_transactions import router as stock_transactions_router
from stockroom.app.api.v1.endpoints.requisitions import router as requisitions_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(inventory_router, tags=["inventory"])
router.include_router(stock_transactions_router, tags=["stock_transactions"])
router.include_router(requisitions_router, tags=["requisitions"])
