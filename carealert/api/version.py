"""Canonical API version constant.

Kept in its own module so the middleware and health check can read it
without importing the application factory.
"""

API_VERSION = "1.0.0"
