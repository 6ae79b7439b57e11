from fastapi import APIRouter

from crm_otp.features.otp.routes.otp import router as otp_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(otp_router)
