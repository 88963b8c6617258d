"""
Limitation de débit optionnelle pour les routes de checkout.
- fastapi-limiter (Redis) quand le lifespan l'a initialisé
- fallback mémoire si LOCAL_RATE_LIMIT_FALLBACK=1 (dev)
- aucune limite si l'init a échoué (rate_limit_enabled=False)
"""
import hashlib
import os
import time
from typing import Any, Dict

from fastapi import HTTPException, Request, Response

from marketplace.utils.security import COOKIE_NAME


def client_key(request: Request) -> str:
    # Priorité: jeton (hashé) puis IP, suffixé par le chemin
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else request.cookies.get(COOKIE_NAME)
    path = request.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = request.client.host if request.client else "local"
    return f"ip:{ip}:{path}"


def _local_hit(request: Request, times: int, seconds: int) -> None:
    now = time.time()
    key = client_key(request)
    store = getattr(request.app.state, "_rl_store", {})
    hits = [t for t in store.get(key, []) if now - t < seconds]
    if len(hits) >= times:
        raise HTTPException(status_code=429, detail="Trop de requêtes, réessayez dans un instant")
    hits.append(now)
    store[key] = hits
    request.app.state._rl_store = store


def optional_rate_limit(times: int, seconds: int):
    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            _local_hit(request, times, seconds)
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is not True:
            return

        try:
            from fastapi_limiter.depends import RateLimiter
        except ImportError:
            return

        async def _identifier(req: Request) -> str:
            return client_key(req)

        limiter = RateLimiter(times=times, seconds=seconds, identifier=_identifier)
        try:
            return await limiter(request, response)
        except HTTPException:
            raise
        except Exception:
            # Redis indisponible en cours de route: pas de 429 en prod
            return
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    try:
        from fastapi_limiter import FastAPILimiter
        ready = getattr(FastAPILimiter, "redis", None) is not None
    except ImportError:
        ready = False
    return {
        "enabled": bool(enabled) if enabled is not None else None,
        "ready": ready,
        "backend": "redis" if ready else None,
    }
