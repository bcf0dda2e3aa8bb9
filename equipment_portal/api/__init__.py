from fastapi import APIRouter

from equipment_portal.api import auth, equipment, requests

api_router = APIRouter()

# Register every module's routes
api_router.include_router(auth.router)
api_router.include_router(equipment.router)
api_router.include_router(requests.router)
