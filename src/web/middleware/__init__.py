"""
Middleware package for the launcher API.

This package contains middleware classes applied to every response
of the web application.
"""

from .security import SecurityHeadersMiddleware

__all__ = ["SecurityHeadersMiddleware"]
