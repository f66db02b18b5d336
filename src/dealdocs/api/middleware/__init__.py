"""API middleware package."""

from src.dealdocs.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
