"""
FastAPI routers for the clip worker.
"""

from app.routers import clips, health, jobs

__all__ = ["health", "jobs", "clips"]
