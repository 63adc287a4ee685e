"""
Utility functions for IDs and timestamps
"""
import random
import re
import string
import time
import uuid

_DECK_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,128}")


def generate_reaction_id() -> str:
    """Generate a unique reaction ID"""
    return str(uuid.uuid4())


def generate_client_id(length: int = 9) -> str:
    """Generate a random ID for a streaming connection (used in logs)"""
    alphabet = string.ascii_lowercase + string.digits
    return "client_" + "".join(random.choice(alphabet) for _ in range(length))


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def is_valid_deck_id(deck_id: str) -> bool:
    """Deck IDs end up inside store keys, so no separators or whitespace"""
    return bool(_DECK_ID_RE.fullmatch(deck_id or ""))
