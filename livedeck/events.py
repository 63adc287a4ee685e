"""
Deck state, live events and the text/event-stream wire format
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

from .utils import generate_reaction_id, now_ms

logger = logging.getLogger("livedeck")

HEARTBEAT_FRAME = b": ping\n\n"


# ============================================================
# KEY NAMING
# ============================================================

def state_key(deck_id: str) -> str:
    return f"deck:{deck_id}:state"


def channel_name(deck_id: str) -> str:
    return f"deck:{deck_id}:channel"


def reactions_key(deck_id: str) -> str:
    return f"deck:{deck_id}:reactions"


# ============================================================
# DATA MODEL
# ============================================================

@dataclass
class DeckState:
    """Durable per-deck state. Last writer wins."""

    slide: int = 0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DeckState":
        """Build from a stored hash; Redis hands every value back as a string."""
        if not data or data.get("slide") is None:
            return cls()
        try:
            return cls(slide=max(int(data["slide"]), 0))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable deck state: {data!r}")
            return cls()


@dataclass
class SlideEvent:
    slide: int
    ts: int = field(default_factory=now_ms)
    type: str = "slide"

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "slide": self.slide, "ts": self.ts})


@dataclass
class ReactionEvent:
    emoji: str
    id: str = field(default_factory=generate_reaction_id)
    ts: int = field(default_factory=now_ms)
    type: str = "reaction"

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "emoji": self.emoji, "id": self.id, "ts": self.ts})

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================
# WIRE FORMAT
# ============================================================

def encode_init(state: DeckState) -> bytes:
    """First frame of every stream: the durable snapshot."""
    return f"event: init\ndata: {json.dumps({'slide': state.slide})}\n\n".encode()


def encode_data(message: str) -> bytes:
    """Unnamed data frame carrying a published payload verbatim."""
    return f"data: {message}\n\n".encode()


def parse_frame(frame: str) -> Optional[dict]:
    """
    Parse one event-stream frame (text between blank lines).

    Returns None for comment/heartbeat frames and for data that is not a
    JSON object. Named ``init`` frames are returned as ``{"type": "init", ...}``.
    """
    event_type = None
    data_lines = []

    for line in frame.splitlines():
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_type = value
        elif name == "data":
            data_lines.append(value)

    if not data_lines:
        return None

    raw = "\n".join(data_lines)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse event data: {raw}")
        return None

    if not isinstance(data, dict):
        return None
    if event_type == "init":
        return {"type": "init", **data}
    return data
