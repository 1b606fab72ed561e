"""Middleware for request correlation IDs and CORS headers."""

from .correlation_id import correlation_id_middleware, get_request_id
from .cors import create_cors_middleware

__all__ = ["correlation_id_middleware", "create_cors_middleware", "get_request_id"]
