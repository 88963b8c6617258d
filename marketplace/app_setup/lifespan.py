"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Client Supabase (service role) et client Flutterwave, construits une fois et posés sur app.state.
- FastAPILimiter (Redis) avec options de test (fakeredis).
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import os
import logging
import redis.asyncio as redis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from marketplace.infra.supabase_client import create_service_client
from marketplace.payments.flutterwave_client import create_gateway_client

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except ImportError:
    FakeRedis = None


def _init_clients(app: FastAPI, logger: logging.Logger) -> None:
    """Configuration manquante: la ressource reste None et les dépendances répondent 503."""
    if getattr(app.state, "supabase", None) is None:
        try:
            app.state.supabase = create_service_client()
        except RuntimeError as e:
            app.state.supabase = None
            logger.warning(f"Supabase client not configured: {e}")
    if getattr(app.state, "gateway", None) is None:
        try:
            app.state.gateway = create_gateway_client()
        except RuntimeError as e:
            app.state.gateway = None
            logger.warning(f"Flutterwave client not configured: {e}")


async def _init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        use_fake = os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1"
        if use_fake:
            if not FakeRedis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Construit les clients partagés et configure le rate limiting.
    - En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    - A l'arrêt, ferme le client HTTP de la passerelle.
    """
    logger = logging.getLogger("uvicorn.error")
    _init_clients(app, logger)
    await _init_rate_limiter(app, logger)
    try:
        yield
    finally:
        gateway = getattr(app.state, "gateway", None)
        if gateway is not None:
            gateway.close()
