"""HTTP middleware for the CareAlert API."""

from carealert.api.middleware.security import RateLimitMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware

__all__ = ["RateLimitMiddleware", "RequestIDMiddleware", "SecurityHeadersMiddleware"]
