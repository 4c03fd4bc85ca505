"""
ttlproxy - Ephemeral URL Forwarding Proxy

A FastAPI-based service that registers target URLs under short-lived
identifiers and streams upstream responses back to callers until the
registration expires.
"""

__version__ = "0.1.0"

from .main import create_app

__all__ = ["create_app"]
