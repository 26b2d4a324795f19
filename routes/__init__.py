"""
API routes.
"""

from routes.entities import router as entities_router
from routes.import_data import router as import_data_router
from routes.realtime import router as realtime_router

__all__ = [
    "entities_router",
    "import_data_router",
    "realtime_router",
]
