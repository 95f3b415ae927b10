"""Middleware registration."""

from fastapi import FastAPI

from stride.config import Settings
from stride.middleware.error_handler import setup_error_handlers
from stride.middleware.logging import setup_logging
from stride.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and request-id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
