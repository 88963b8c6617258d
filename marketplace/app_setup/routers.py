"""
Registre central des routers.
- API: cart, checkout (commandes + paiements), webhook Flutterwave
- Admin: balayage des paiements
- Health: health_router
"""
from fastapi import FastAPI
from marketplace.cart import views as cart_views
from marketplace.orders import views as orders_views
from marketplace.payments import views as payments_views
from marketplace.admin.views import router as admin_router
from marketplace.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    """L'ordre n'a pas d'impact sauf conflits de chemins (évités par préfixes)."""
    app.include_router(cart_views.router)
    app.include_router(orders_views.router)
    app.include_router(payments_views.router)
    app.include_router(payments_views.webhook_router)
    app.include_router(admin_router)
    app.include_router(health_router)
