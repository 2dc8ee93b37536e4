from __future__ import annotations

import json
import time
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


# ---------------------------------------------------------------------------
# Message types
# ---------------------------------------------------------------------------

REGISTER = "register"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
UDP_INFO = "udp-info"
GET_PEERS = "get-peers"
REGISTERED = "registered"
PEER_LIST = "peer-list"
ERROR = "error"

INBOUND_TYPES = frozenset({REGISTER, OFFER, ANSWER, ICE_CANDIDATE, UDP_INFO, GET_PEERS})

SERVER_ID = "server"


# ---------------------------------------------------------------------------
# Envelope model
# ---------------------------------------------------------------------------

class EnvelopeError(ValueError):
    """Raised when an inbound message is not a well-formed envelope."""


class Envelope(BaseModel):
    """JSON envelope exchanged with signaling clients.

    A missing ``type`` is accepted here and rejected by the router as an
    unknown type; a ``type`` that is not a string is malformed.
    """

    type: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    data: Any = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def parse_envelope(raw: Union[str, bytes]) -> Tuple[Envelope, Dict[str, Any]]:
    """Decode one wire message.

    Returns the validated model together with the decoded JSON object, which
    is what gets re-serialised when a copy has to be rewritten.
    """

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EnvelopeError("message is not UTF-8") from exc
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EnvelopeError("message is not JSON") from exc
    if not isinstance(obj, dict):
        raise EnvelopeError("envelope must be a JSON object")
    try:
        envelope = Envelope.model_validate(obj)
    except ValidationError as exc:
        raise EnvelopeError(str(exc)) from exc
    return envelope, obj


# ---------------------------------------------------------------------------
# Frame construction
# ---------------------------------------------------------------------------

def build_frame(type: str, data: Dict[str, Any], *, to: str | None = None) -> Dict[str, Any]:
    """Create a server-originated envelope dict."""

    frame: Dict[str, Any] = {"type": type, "from": SERVER_ID}
    if to is not None:
        frame["to"] = to
    frame["data"] = data
    return frame


def make_registered(identity: str) -> Dict[str, Any]:
    return build_frame(
        REGISTERED,
        {"success": True, "id": identity, "timestamp": now_ms()},
        to=identity,
    )


def make_peer_list(peers: Iterable[str]) -> Dict[str, Any]:
    return build_frame(PEER_LIST, {"peers": list(peers)})


def make_error(message: str) -> Dict[str, Any]:
    return build_frame(ERROR, {"error": message, "timestamp": now_ms()})


def encode(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False)


__all__ = [
    "Envelope",
    "EnvelopeError",
    "INBOUND_TYPES",
    "SERVER_ID",
    "now_ms",
    "parse_envelope",
    "build_frame",
    "make_registered",
    "make_peer_list",
    "make_error",
    "encode",
]
