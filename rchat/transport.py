"""Reticulum transport: adapts an ``RNS.Link`` to a hub ``Connection``."""

from __future__ import annotations

import threading
from dataclasses import replace

import RNS

from .connection import CloseReason, Connection
from .constants import MAX_RESOURCE_BYTES
from .messages import ChatEvent, encode_event


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"


class LinkConnection(Connection):
    """One established Reticulum link.

    Inbound packets are fed to the inbox from Reticulum's callback thread.
    Outbound events go out from the writer thread as a single packet when
    they fit the link MDU, otherwise as an ``RNS.Resource``. If the resource
    cannot be sent, the event is split into several events that each fit a
    packet.
    """

    resource_timeout = 15.0

    def __init__(self, link: RNS.Link) -> None:
        self.link = link
        self.link_id = fmt_link_id(link)
        super().__init__(self.link_id[:8] if self.link_id != "-" else "link")

        link.set_packet_callback(lambda data, pkt: self.feed(data))
        link.set_link_closed_callback(lambda closed_link: self._on_link_closed(closed_link))

    def _on_link_closed(self, link: RNS.Link) -> None:
        reason = CloseReason.NORMAL
        if getattr(link, "teardown_reason", None) == RNS.Link.TIMEOUT:
            reason = CloseReason.TIMEOUT
        self.close(reason)

    def _packet_would_fit(self, payload: bytes) -> bool:
        mdu = getattr(self.link, "MDU", None)
        if mdu is not None:
            return len(payload) <= mdu
        try:
            pkt = RNS.Packet(self.link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def _deliver(self, event: ChatEvent) -> None:
        payload = encode_event(event)
        if self._packet_would_fit(payload):
            self._transmit(payload)
            return
        if len(payload) <= MAX_RESOURCE_BYTES and self._send_resource(payload):
            return
        self._send_chunks(event)

    def _send_resource(self, payload: bytes) -> bool:
        """Send ``payload`` as a resource and wait until the transfer ends.

        Later events for this link stay queued until then, so they cannot
        overtake the resource.
        """
        done = threading.Event()
        try:
            resource = RNS.Resource(
                payload,
                self.link,
                advertise=True,
                auto_compress=False,
                callback=lambda r: done.set(),
            )
        except Exception as e:
            self.log.warning(
                "Failed to create resource link_id=%s bytes=%s: %s",
                self.link_id,
                len(payload),
                e,
            )
            return False

        if not done.wait(self.resource_timeout):
            self.log.warning(
                "Resource transfer timed out link_id=%s bytes=%s", self.link_id, len(payload)
            )
            try:
                resource.cancel()
            except Exception:
                self.log.debug("Resource cancel failed link_id=%s", self.link_id, exc_info=True)
            return False

        if resource.status != RNS.Resource.COMPLETE:
            self.log.warning(
                "Resource transfer failed link_id=%s bytes=%s status=%s",
                self.link_id,
                len(payload),
                resource.status,
            )
            return False

        self.log.debug("Sent resource link_id=%s bytes=%s", self.link_id, len(payload))
        return True

    def _send_chunks(self, event: ChatEvent) -> None:
        # Split on lines first, then shrink the chunk until a packet fits.
        sent = 0
        for line in event.text.splitlines() or [event.text]:
            remaining = line
            max_chars = min(len(remaining), 512)
            while remaining:
                take = min(len(remaining), max_chars)
                payload = encode_event(replace(event, text=remaining[:take]))
                if self._packet_would_fit(payload):
                    self._transmit(payload)
                    sent += 1
                    remaining = remaining[take:]
                    continue
                if max_chars <= 1:
                    self.log.warning(
                        "Event cannot be split to fit link MDU link_id=%s sender=%s",
                        self.link_id,
                        event.sender_id,
                    )
                    return
                max_chars = max(1, max_chars // 2)
        self.log.debug("Sent event in %d chunks link_id=%s", sent, self.link_id)

    def _transmit(self, payload: bytes) -> None:
        RNS.Packet(self.link, payload).send()

    def _shutdown_transport(self) -> None:
        if self.link.status != RNS.Link.CLOSED:
            self.link.teardown()
