"""Health and connectivity endpoints."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_store = None


def set_store(store):
    global _store
    _store = store


@router.get("/health")
async def health_check():
    """Service health and job store state."""
    store = _store.health() if _store is not None else None
    degraded = store is not None and store.get("backend") == "supabase" and not store.get("durable_enabled")
    return {
        "status": "degraded" if degraded else "healthy",
        "store": store,
        "python_version": sys.version,
        "platform": platform.platform(),
    }


@router.get("/ping")
async def ping():
    """Connectivity check used by pollers in offline mode."""
    return {"status": "ok"}
