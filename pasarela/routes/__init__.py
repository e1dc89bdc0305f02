"""
Rutas/Endpoints del servicio anfitrión.
"""

from pasarela.routes.payments import router as payments_router
from pasarela.routes.payments import subscriptions_router
from pasarela.routes.webhooks import router as webhooks_router

__all__ = [
    "payments_router",
    "subscriptions_router",
    "webhooks_router",
]
