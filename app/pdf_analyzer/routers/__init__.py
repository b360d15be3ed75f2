"""
Routers package for FastAPI endpoints.

Organized by domain:
- analyze: PDF upload and two-phase page analysis
- proxy: passthrough to the chat-completion endpoint
"""

from . import analyze, proxy

__all__ = ["analyze", "proxy"]
