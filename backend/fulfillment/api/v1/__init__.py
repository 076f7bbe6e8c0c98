"""
API v1 routers.
"""

from fastapi import APIRouter

from fulfillment.api.v1.bookings import router as bookings_router
from fulfillment.api.v1.line_items import router as line_items_router
from fulfillment.api.v1.orders import router as orders_router
from fulfillment.api.v1.reskins import router as reskins_router
from fulfillment.schemas.common import ErrorResponse

ERROR_RESPONSES = {
    401: {"description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Role or company not permitted"},
    404: {"model": ErrorResponse, "description": "Entity not found"},
    409: {"model": ErrorResponse, "description": "Transition or availability conflict"},
    422: {"model": ErrorResponse, "description": "Validation failed"},
}

api_router = APIRouter(responses=ERROR_RESPONSES)
api_router.include_router(orders_router)
api_router.include_router(line_items_router)
api_router.include_router(bookings_router)
api_router.include_router(reskins_router)

__all__ = ["api_router"]
