from fastapi import FastAPI
from cartsync.core.config import get_settings
from cartsync.core.lifespan import lifespan
from cartsync.api.v1.routers.health import router as health_router
from cartsync.api.v1.routers.cart import router as cart_router
from cartsync.api.v1.routers.recommendations import router as recommendations_router
from cartsync.api.v1.routers.rewards import router as rewards_router
from cartsync.api.v1.routers.events import router as events_router
from cartsync.core.logging import configure_logging

from fastapi.middleware.cors import CORSMiddleware
import logging, os

settings = get_settings()
configure_logging(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    engine_level=logging.DEBUG if settings.ENGINE_DEBUG else None,
)

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ------- CORS -------
# ALLOWED_ORIGINS is a CSV of storefront origins, e.g.
# ALLOWED_ORIGINS="https://shop.example.com,https://www.shop.example.com"
allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = [o.strip() for o in allowed_origins_env.split(",") if o.strip()]

# Preview storefronts (*.myshopify.com) can be allowed through a regex.
# NB: allow_credentials=True with "*" is forbidden, list origins and/or use the regex.
allow_origin_regex = r"^https:\/\/.*\.myshopify\.com$" if os.getenv("ALLOW_SHOPIFY_PREVIEWS", "false").lower() == "true" else None

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins if allowed_origins else [settings.STOREFRONT_URL],
    allow_origin_regex=allow_origin_regex,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],                            # X-Session-Id, X-Cart-Token, X-Shop
    max_age=86400,
)

# ------- Routes -------
app.include_router(health_router)
app.include_router(cart_router, prefix=settings.api_prefix)
app.include_router(recommendations_router, prefix=settings.api_prefix)
app.include_router(rewards_router, prefix=settings.api_prefix)
app.include_router(events_router, prefix=settings.api_prefix)
