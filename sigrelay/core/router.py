from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from . import proto
from .broadcast import PeerListBroadcaster
from .proto import Envelope, EnvelopeError, encode, make_error, make_peer_list, make_registered, parse_envelope
from .registry import ConnectionRegistry
from .session import Channel, ClientSession, Frame, send_all

log = logging.getLogger("sigrelay.core.router")

Deliveries = List[Tuple[Channel, Frame]]


class MessageRouter:
    """Parses inbound envelopes and dispatches them by type.

    Payloads are never inspected beyond ``data.id`` on ``register``. The
    ``from`` field is client-asserted; with ``bind_sender`` enabled, messages
    from a registered session have it overwritten with the bound identity.

    Dispatch runs under ``registry.lock`` without awaiting anything and
    returns the outbound frames, which are sent once the lock is released.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: PeerListBroadcaster,
        *,
        bind_sender: bool = False,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.bind_sender = bind_sender

    async def handle(self, session: ClientSession, raw: Union[str, bytes]) -> None:
        try:
            envelope, obj = parse_envelope(raw)
        except EnvelopeError as exc:
            log.warning("Malformed message from %s: %s", session.label, exc)
            await session.channel.send(make_error("Invalid JSON format"))
            return

        log.debug("Received [%s] from %s", envelope.type, session.label)
        async with self.registry.lock:
            if self.bind_sender and session.registered and envelope.from_ != session.identity:
                envelope.from_ = obj["from"] = session.identity
                raw = encode(obj)
            deliveries, membership_changed = self._dispatch(session, envelope, raw, obj)

        await send_all(deliveries)
        if membership_changed:
            await self.broadcaster.broadcast_peer_list()

    def _dispatch(
        self,
        session: ClientSession,
        envelope: Envelope,
        raw: Union[str, bytes],
        obj: Dict[str, Any],
    ) -> Tuple[Deliveries, bool]:
        type_ = envelope.type
        if type_ == proto.REGISTER:
            return self._handle_register(session, envelope)
        if type_ == proto.OFFER:
            return self._handle_offer(envelope, raw), False
        if type_ == proto.ANSWER:
            return self._handle_answer(envelope, raw), False
        if type_ in (proto.ICE_CANDIDATE, proto.UDP_INFO):
            return self._fan_out(envelope, obj), False
        if type_ == proto.GET_PEERS:
            return [(session.channel, make_peer_list(self.registry.snapshot_identities()))], False
        log.warning("Unknown message type from %s: %s", session.label, type_)
        return [(session.channel, make_error(f"Unknown message type: {type_}"))], False

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_register(self, session: ClientSession, envelope: Envelope) -> Tuple[Deliveries, bool]:
        identity = _resolve_identity(envelope)
        if not identity:
            return [(session.channel, make_error("Client ID is required"))], False

        self.registry.register(identity, session)
        return [(session.channel, make_registered(identity))], True

    def _handle_offer(self, envelope: Envelope, raw: Union[str, bytes]) -> Deliveries:
        target = self.registry.lookup(envelope.to)
        if target is not None:
            log.info("Forwarding offer %s -> %s", envelope.from_, envelope.to)
            return [(target.channel, _as_text(raw))]

        log.warning("Offer target not found: %s", envelope.to)
        sender = self.registry.lookup(envelope.from_)
        if sender is None:
            return []
        if envelope.to is None:
            return [(sender.channel, make_error("Target peer ID is required"))]
        return [(sender.channel, make_error(f"Peer not found: {envelope.to}"))]

    def _handle_answer(self, envelope: Envelope, raw: Union[str, bytes]) -> Deliveries:
        # no error path back to the sender, unlike offer
        target = self.registry.lookup(envelope.to)
        if target is None:
            log.warning("Answer target not found: %s", envelope.to)
            return []
        log.info("Forwarding answer %s -> %s", envelope.from_, envelope.to)
        return [(target.channel, _as_text(raw))]

    def _fan_out(self, envelope: Envelope, obj: Dict[str, Any]) -> Deliveries:
        """Copy the envelope to every other open session, ``to`` rewritten per recipient."""

        deliveries: Deliveries = []
        for session in self.registry.sessions():
            if session.identity == envelope.from_ or not session.channel.is_open:
                continue
            copy = dict(obj)
            copy["to"] = session.identity
            deliveries.append((session.channel, copy))

        if envelope.type == proto.UDP_INFO:
            log.info("Broadcast udp-info from %s (endpoint=%s)", envelope.from_, _endpoint(envelope))
        else:
            log.info("Broadcast %s from %s to %d peer(s)", envelope.type, envelope.from_, len(deliveries))
        return deliveries


def _resolve_identity(envelope: Envelope) -> Optional[str]:
    data = envelope.data
    candidate = data.get("id") if isinstance(data, dict) else None
    identity = candidate or envelope.from_
    if identity is None or identity == "":
        return None
    return identity if isinstance(identity, str) else str(identity)


def _endpoint(envelope: Envelope) -> Any:
    data = envelope.data
    return data.get("endpoint") if isinstance(data, dict) else None


def _as_text(raw: Union[str, bytes]) -> str:
    return raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw


__all__ = ["MessageRouter"]
