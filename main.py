"""
Savory - Application Entry Point
==================================
FastAPI app initialization, business-error handlers, and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from config.database import Base, engine
from common.exceptions import (
    SavoryError, AuthenticationError, AuthorizationError, ValidationError,
    DuplicateError, NotFoundError, ConcurrencyConflictError,
)

logger = logging.getLogger("savory.app")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User  # noqa: F401,E402
from modules.admin.models import SystemSetting  # noqa: F401,E402
from modules.catalog.models import (  # noqa: F401,E402
    Category, Product, ProductType, ProductExtra, Combo, ComboItem,
)
from modules.cart.models import Cart, CartItem, CartItemExtra  # noqa: F401,E402
from modules.order.models import Order, OrderItem, OrderItemExtra  # noqa: F401,E402
from modules.voucher.models import Voucher, VoucherProduct, VoucherCombo, VoucherUser, OrderVoucher  # noqa: F401,E402
from modules.reward.models import Reward, RewardProduct, RewardCombo, RewardRedemption  # noqa: F401,E402

# ==========================================
# Import routers
# ==========================================
from modules.cart.routes import router as cart_router  # noqa: E402
from modules.order.routes import router as order_router  # noqa: E402
from modules.order.admin_routes import router as order_admin_router  # noqa: E402
from modules.voucher.routes import router as voucher_router  # noqa: E402
from modules.voucher.admin_routes import router as voucher_admin_router  # noqa: E402
from modules.reward.routes import router as reward_router  # noqa: E402
from modules.reward.admin_routes import router as reward_admin_router  # noqa: E402
from modules.loyalty.routes import router as loyalty_router  # noqa: E402


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)
    logger.info("Savory started")
    yield


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Savory",
    description="Vouchers, rewards and loyalty for the Savory storefront",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handlers: business errors -> JSON
# ==========================================
_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (DuplicateError, 409),
    (ConcurrencyConflictError, 409),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
)


async def savory_error_handler(request: Request, exc: SavoryError):
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    if isinstance(exc, ConcurrencyConflictError):
        body["reason"] = "CONCURRENCY_CONFLICT"
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(body, status_code=status_code)


app.add_exception_handler(SavoryError, savory_error_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(order_admin_router)
app.include_router(voucher_router)
app.include_router(voucher_admin_router)
app.include_router(reward_router)
app.include_router(reward_admin_router)
app.include_router(loyalty_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
