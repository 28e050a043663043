from fastapi import APIRouter

from app.api.routes import applications
from app.api.routes import webhooks

api_router = APIRouter()
api_router.include_router(webhooks.router)
api_router.include_router(applications.router)
