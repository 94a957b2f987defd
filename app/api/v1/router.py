from fastapi import APIRouter
from api.v1.routes.keys import router as keys_router
from api.v1.routes.notifications import router as notifications_router
from api.v1.routes.devices import router as devices_router


router = APIRouter()
router.include_router(keys_router)
router.include_router(notifications_router)
router.include_router(devices_router)
