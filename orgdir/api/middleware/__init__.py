"""
API middleware.
"""

from orgdir.api.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware

__all__ = ["REQUEST_ID_HEADER", "RequestIdMiddleware"]
