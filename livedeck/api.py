"""
HTTP command handlers: presenter login, slide advance, reactions
"""
import json
import logging

from aiohttp import web

from .auth import Authorizer
from .config import Settings
from .errors import AuthorizationError, ValidationError
from .events import DeckState, ReactionEvent, SlideEvent
from .gateway import StreamingGateway
from .state import Backend
from .utils import is_valid_deck_id

logger = logging.getLogger("livedeck")

MAX_EMOJI_LENGTH = 32

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}

SETTINGS = web.AppKey("settings", Settings)
BACKEND = web.AppKey("backend", Backend)
AUTHORIZER = web.AppKey("authorizer", Authorizer)
GATEWAY = web.AppKey("gateway", StreamingGateway)


def _deck_id(request: web.Request) -> str:
    deck_id = request.match_info["deck_id"]
    if not is_valid_deck_id(deck_id):
        raise ValidationError("deck_id", "must be 1-128 letters, digits, '-' or '_'")
    return deck_id


async def _json_body(request: web.Request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("body", "not valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("body", "expected a JSON object")
    return data


def _ok() -> web.Response:
    return web.Response(text="ok", content_type="text/plain", headers=CORS_HEADERS)


# ============================================================
# PRESENTER LOGIN
# ============================================================

async def api_login(request: web.Request) -> web.Response:
    """Exchange the control secret for a presenter token"""
    data = await _json_body(request)
    password = data.get("password")
    if not isinstance(password, str):
        raise ValidationError("password", "expected a string")

    token = request.app[AUTHORIZER].login(password)
    if token is None:
        logger.warning(f"Presenter login failed from {request.remote}")
        raise AuthorizationError("Invalid password")

    logger.info(f"🔑 Presenter token issued ({token[:8]}...)")
    return web.json_response({"ok": True, "token": token}, headers=CORS_HEADERS)


# ============================================================
# CONTROL COMMANDS
# ============================================================

async def api_advance(request: web.Request) -> web.Response:
    """Move a deck to a slide: durable write first, then broadcast"""
    deck_id = _deck_id(request)

    if not await request.app[AUTHORIZER].is_authorized(request.headers.get("Authorization")):
        logger.warning(f"Advance rejected for deck {deck_id}: unauthorized")
        raise AuthorizationError()

    data = await _json_body(request)
    slide = data.get("slide")
    if isinstance(slide, bool) or not isinstance(slide, int):
        raise ValidationError("slide", "expected an integer")
    if slide < 0:
        raise ValidationError("slide", "must be >= 0")

    backend = request.app[BACKEND]
    # If this raises, nothing is published
    await backend.set_deck_state(deck_id, DeckState(slide=slide))

    event = SlideEvent(slide=slide)
    try:
        receivers = await backend.publish(deck_id, event.to_json())
    except Exception as e:
        # Durable state is already correct; reconnecting clients pick it up
        logger.error(f"Publish failed for deck {deck_id} after state write: {e}")
    else:
        logger.info(f"▶️ Deck {deck_id} -> slide {slide} ({receivers} live)")

    return _ok()


async def api_react(request: web.Request) -> web.Response:
    """Broadcast an emoji reaction and queue it for the fallback read path"""
    deck_id = _deck_id(request)
    data = await _json_body(request)
    emoji = data.get("emoji")
    if not isinstance(emoji, str) or not emoji.strip():
        raise ValidationError("emoji", "expected a non-empty string")
    if len(emoji) > MAX_EMOJI_LENGTH:
        raise ValidationError("emoji", f"longer than {MAX_EMOJI_LENGTH} characters")

    backend = request.app[BACKEND]
    reaction = ReactionEvent(emoji=emoji)
    payload = reaction.to_json()

    await backend.publish(deck_id, payload)
    await backend.push_reaction(deck_id, payload, request.app[SETTINGS].reaction_ttl)
    logger.debug(f"Reaction {emoji} ({reaction.id}) on deck {deck_id}")

    return _ok()


# ============================================================
# READ PATHS
# ============================================================

async def api_recent_reactions(request: web.Request) -> web.Response:
    """Fallback for clients without a live stream"""
    deck_id = _deck_id(request)
    reactions = await request.app[BACKEND].recent_reactions(deck_id)
    return web.json_response({"ok": True, "reactions": reactions}, headers=CORS_HEADERS)


async def api_deck_state(request: web.Request) -> web.Response:
    deck_id = _deck_id(request)
    state = await request.app[BACKEND].get_deck_state(deck_id)
    return web.json_response({"ok": True, "slide": state.slide}, headers=CORS_HEADERS)


async def api_preflight(request: web.Request) -> web.Response:
    return web.Response(status=204, headers=CORS_HEADERS)
