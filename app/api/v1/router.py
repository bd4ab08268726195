from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.doordash import router as doordash_router
from app.api.v1.endpoints.orders import router as orders_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(doordash_router, tags=["doordash"])
router.include_router(orders_router, tags=["orders"])
