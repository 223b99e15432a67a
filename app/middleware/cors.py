# app/middleware/cors.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from loguru import logger


def setup_cors_middleware(app: FastAPI) -> None:
    """
    Allow the analyst UI origins; local dev servers are added in development
    """
    allowed_origins = settings.cors_origins_list
    if settings.ENVIRONMENT == "development":
        allowed_origins = allowed_origins + ["http://localhost:5173", "http://127.0.0.1:5173"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "X-Requested-With", "X-Trace-ID"],
        expose_headers=["X-Trace-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
        max_age=600,
    )

    logger.info(f"CORS configured for {len(allowed_origins)} origins")
