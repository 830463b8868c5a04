"""HTTP 路由集合。"""

from fastapi import APIRouter

from .chat import router as chat_router
from .system import router as system_router

api_router = APIRouter()
api_router.include_router(system_router)
api_router.include_router(chat_router)

__all__ = ["api_router"]
