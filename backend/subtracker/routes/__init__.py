from fastapi import APIRouter
from subtracker.routes import sync, subscriptions, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
