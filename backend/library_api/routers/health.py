"""Welcome and health check endpoints."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def welcome() -> dict:
    """Show the start page of the API."""
    return {"message": "Welcome to the Library API!"}


@router.get("/health")
async def health_check() -> dict:
    """Return service health status."""
    return {
        "status": "healthy",
        "service": "library-api",
        "version": "1.0.0",
    }
