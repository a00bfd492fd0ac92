"""FastAPI dependencies resolving the capabilities chosen at startup."""

from fastapi import HTTPException, Request, status

from app.config import get_settings
from app.db.storage import ActivityStore
from app.services.model_backends import ModelBackend, create_model_backend


def get_store(request: Request) -> ActivityStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage is not initialised",
        )
    return store


def get_model_backend(request: Request) -> ModelBackend:
    """Backend stored at startup, created on first use otherwise."""
    backend = getattr(request.app.state, "model_backend", None)
    if backend is None:
        try:
            backend = create_model_backend(get_settings())
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Model backend unavailable: {e}",
            ) from e
        request.app.state.model_backend = backend
    return backend
