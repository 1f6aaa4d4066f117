# payflow/api/v1/api.py

from fastapi import APIRouter
from payflow.api.v1.endpoints import payments, webhooks

# This is the main router for the v1 API.
api_router = APIRouter()

api_router.include_router(payments.router)
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
