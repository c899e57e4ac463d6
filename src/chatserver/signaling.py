"""Point-to-point relay for peer media negotiation payloads."""

import logging
from collections.abc import Callable
from typing import Any

from chatserver.protocol import SIGNAL_PAYLOAD_KEYS, Outbound

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Forwards offer/answer/candidate blobs to exactly one target connection.

    Stateless: connectivity is looked up through ``is_connected``. Payloads
    for absent targets (or addressed back to the sender) are dropped without
    acknowledgment.
    """

    def __init__(self, is_connected: Callable[[str], bool]) -> None:
        self._is_connected = is_connected

    def relay(self, kind: str, target_id: str, sender_id: str, payload: Any) -> Outbound | None:
        """Build the forwarded event, or None if it must be dropped.

        Args:
            kind: Signaling event name (webrtc_offer, webrtc_answer, webrtc_ice_candidate)
            target_id: Identity of the receiving connection
            sender_id: Identity of the sending connection
            payload: Opaque negotiation blob

        Raises:
            KeyError: If ``kind`` is not a signaling event
        """
        key = SIGNAL_PAYLOAD_KEYS[kind]

        if target_id == sender_id or not self._is_connected(target_id):
            logger.debug(
                "Signaling target unavailable, dropping",
                extra={"kind": kind, "sender": sender_id, "target": target_id},
            )
            return None

        return Outbound(
            event=kind,
            data={key: payload, "sender": sender_id},
            recipients=(target_id,),
        )
