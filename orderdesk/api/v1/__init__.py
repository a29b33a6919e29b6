"""
API v1 package initialization.
"""

from orderdesk.api.v1.addons import router as addons_router
from orderdesk.api.v1.invoices import router as invoices_router
from orderdesk.api.v1.orders import router as orders_router
from orderdesk.api.v1.production import router as production_router

__all__ = ["addons_router", "invoices_router", "orders_router", "production_router"]
