from fastapi import APIRouter

from ticketshare.api.v1.endpoints.applications import router as applications_router
from ticketshare.api.v1.endpoints.conversations import router as conversations_router
from ticketshare.api.v1.endpoints.health import router as health_router
from ticketshare.api.v1.endpoints.internal import router as internal_router
from ticketshare.api.v1.endpoints.listings import router as listings_router
from ticketshare.api.v1.endpoints.me import router as me_router
from ticketshare.api.v1.endpoints.notifications import router as notifications_router
from ticketshare.api.v1.endpoints.reviews import router as reviews_router
from ticketshare.api.v1.endpoints.users import router as users_router
from ticketshare.api.v1.endpoints.webhooks import router as webhooks_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(me_router, tags=["me"])
router.include_router(listings_router, tags=["listings"])
router.include_router(conversations_router, tags=["conversations"])
router.include_router(applications_router, tags=["applications"])
router.include_router(reviews_router, tags=["reviews"])
router.include_router(users_router, tags=["users"])
router.include_router(notifications_router, tags=["notifications"])
router.include_router(webhooks_router, tags=["webhooks"])
router.include_router(internal_router, tags=["internal"])
