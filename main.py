#!/usr/bin/env python3
"""
livedeck - Entry Point
Live slide sync over server-sent events + presenter commands + reactions
"""
import logging
import socket
import time
from collections import defaultdict
from typing import Optional

from aiohttp import web

from livedeck.api import (
    AUTHORIZER, BACKEND, CORS_HEADERS, GATEWAY, SETTINGS,
    api_advance, api_deck_state, api_login, api_preflight,
    api_react, api_recent_reactions,
)
from livedeck.auth import Authorizer, IdentityLookup
from livedeck.config import Settings
from livedeck.errors import LiveDeckError
from livedeck.gateway import StreamingGateway
from livedeck.state import Backend, create_backend

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("livedeck")

# Per-address timestamps of recent POST commands
RATE_LIMITS = web.AppKey("rate_limits", defaultdict)


@web.middleware
async def error_middleware(request, handler):
    """Turn livedeck errors into JSON error responses"""
    try:
        return await handler(request)
    except LiveDeckError as e:
        if e.status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message} {e.details}")
            message = "Server configuration error"
        else:
            message = e.message
        return web.json_response(
            {"ok": False, "error": message},
            status=e.status,
            headers=CORS_HEADERS
        )


@web.middleware
async def rate_limit_middleware(request, handler):
    """Simple command throttle: N POST requests per minute per IP"""
    if request.method != "POST":
        return await handler(request)

    ip = request.remote
    now = time.time()
    store = request.app[RATE_LIMITS]
    limit = request.app[SETTINGS].command_limit_per_minute

    # Clean old entries
    store[ip] = [t for t in store[ip] if now - t < 60]

    # Check limit
    if len(store[ip]) >= limit:
        logger.warning(f"Rate limit exceeded for {ip}")
        return web.json_response(
            {"ok": False, "error": "Rate limit exceeded"},
            status=429,
            headers=CORS_HEADERS
        )

    store[ip].append(now)
    return await handler(request)


async def close_streams(app: web.Application):
    await app[GATEWAY].close_all()


async def close_backend(app: web.Application):
    await app[BACKEND].close()


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[Backend] = None,
    identity_lookup: Optional[IdentityLookup] = None,
) -> web.Application:
    """Create and configure the aiohttp application"""
    settings = settings or Settings.from_env()
    backend = backend or create_backend(settings)

    app = web.Application(middlewares=[error_middleware, rate_limit_middleware])
    app[SETTINGS] = settings
    app[BACKEND] = backend
    app[AUTHORIZER] = Authorizer(
        settings.control_secret,
        identity_lookup=identity_lookup,
        token_ttl=settings.token_ttl,
    )
    app[GATEWAY] = StreamingGateway(
        backend,
        heartbeat_interval=settings.heartbeat_interval,
        queue_size=settings.outbound_queue_size,
        write_timeout=settings.write_timeout,
    )
    app[RATE_LIMITS] = defaultdict(list)

    # Commands
    app.router.add_post("/auth/login", api_login)
    app.router.add_post("/control/advance/{deck_id}", api_advance)
    app.router.add_post("/react/{deck_id}", api_react)

    # Reads
    app.router.add_get("/live/{deck_id}", app[GATEWAY].handle)
    app.router.add_get("/state/{deck_id}", api_deck_state)
    app.router.add_get("/reactions/{deck_id}", api_recent_reactions)

    # CORS preflight for presenter windows on another origin
    app.router.add_route("OPTIONS", "/{tail:.*}", api_preflight)

    app.on_shutdown.append(close_streams)
    app.on_cleanup.append(close_backend)

    logger.info(f"🎞️ livedeck server ready • backend={settings.backend}")
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "localhost"


def main():
    settings = Settings.from_env()
    app = create_app(settings)
    local_ip = get_local_ip()

    logger.info(f"🚀 Starting server on {settings.host}:{settings.port}")
    logger.info(f"💡 Access at: http://{local_ip}:{settings.port}")

    web.run_app(app, host=settings.host, port=settings.port, handler_cancellation=True)


if __name__ == "__main__":
    main()
