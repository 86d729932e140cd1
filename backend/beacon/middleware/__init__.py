"""
Middleware package.
"""
from beacon.middleware.error_handler import ErrorHandlerMiddleware
from beacon.middleware.request_id import RequestIdMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "RequestIdMiddleware",
]
