"""
Middleware package for the e-KYC session API.
"""
from middleware.request_id import RequestIDMiddleware, get_request_id
from middleware.api_key import APIKeyMiddleware

__all__ = ["RequestIDMiddleware", "get_request_id", "APIKeyMiddleware"]
