from payments.routers.health import router as health_router
from payments.routers.webhook import router as webhook_router
from payments.routers.subscriptions import router as subscriptions_router
from payments.routers.family import router as family_router

__all__ = ["health_router", "webhook_router", "subscriptions_router", "family_router"]
