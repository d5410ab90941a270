"""
FastAPI routers for the montage service.
"""

from mediafx.routers import health, montage

__all__ = ["health", "montage"]
