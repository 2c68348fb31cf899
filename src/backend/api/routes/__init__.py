"""
API Router - Aggregates all endpoints.

Usage in main.py:
    from api.routes import router as api_router
    app.include_router(api_router, prefix="/api")
"""

from fastapi import APIRouter

from api.routes import chat, health, tools

router = APIRouter()

# Health endpoint (polled by the deployment platform)
router.include_router(
    health.router,
    tags=["Health"],
)

# Chat streaming and mode discovery
router.include_router(
    chat.router,
    tags=["Chat"],
)

# MCP tool catalog
router.include_router(
    tools.router,
    tags=["Tools"],
)

__all__ = ["router"]
