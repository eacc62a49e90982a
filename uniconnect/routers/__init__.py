"""FastAPI routers exposed by UniConnect Hub."""
from .ai_chat import router as ai_chat_router
from .realtime import router as realtime_router

__all__ = ["ai_chat_router", "realtime_router"]
