"""Publisher that posts archived results as Mastodon statuses."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

import requests

from .publish import (
    SLOT_IA,
    SLOT_IP,
    SLOT_IS,
    SLOT_PH,
    ArtifactNotFoundError,
    Collect,
    Module,
    Publisher,
    PublishError,
    artifact,
)

logger = logging.getLogger(__name__)

TIMEOUT = 30.0

Renderer = Callable[[Sequence[Collect], Any], str]

_SLOT_NAMES = {
    SLOT_IA: "Internet Archive",
    SLOT_IS: "archive.today",
    SLOT_IP: "IPFS",
    SLOT_PH: "Telegraph",
}


def _render(cols: Sequence[Collect], rdx: Any) -> str:
    lines = []
    for col in cols:
        lines.append(f"• {_SLOT_NAMES.get(col.arc, col.arc)}")
        lines.append(f"> {col.dst}")
    if cols:
        lines.append("")
        lines.append(f"source: {cols[0].src}")
    return "\n".join(lines)


class Mastodon(Publisher):
    """Posts public statuses to a Mastodon server."""

    def __init__(
        self,
        server: str,
        client_key: str,
        client_secret: str,
        access_token: str,
        render: Optional[Renderer] = None,
        cw_text: str = "",
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (server and client_key and client_secret and access_token):
            raise ValueError("Mastodon server and credentials are required")
        self.server = server.rstrip("/")
        self.client_key = client_key
        self.client_secret = client_secret
        self.access_token = access_token
        self.cw_text = cw_text
        self._render = render if render is not None else _render
        self._session = session if session is not None else requests.Session()

    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Post a status describing ``cols``; the first arg is a status to reply to."""
        reply_to = args[0] if args else ""
        if not cols:
            raise PublishError("publish to mastodon: collects empty")
        try:
            artifact(rdx, cols)
        except ArtifactNotFoundError as exc:
            logger.warning("extract data failed: %s", exc)

        text = self._render(cols, rdx)
        if not self.to_mastodon(text, reply_to):
            raise PublishError("publish to mastodon failed")

    def to_mastodon(self, text: str, reply_to: str = "") -> bool:
        """Post ``text`` as a public status; report success."""
        if not text:
            logger.warning("mastodon validation failed: Text can't be blank")
            return False
        form = {
            "status": text,
            "spoiler_text": self.cw_text,
            "visibility": "public",
        }
        if reply_to:
            form["in_reply_to_id"] = reply_to
        try:
            resp = self._session.post(
                f"{self.server}/api/v1/statuses",
                data=form,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("post Mastodon status failed: %s", exc)
            return False
        if not 200 <= resp.status_code < 300:
            logger.error(
                "post Mastodon status failed: %s %s", resp.status_code, resp.text
            )
            return False
        return True

    def shutdown(self) -> None:
        """Close the HTTP session."""
        self._session.close()


def setup_module(
    server: str,
    client_key: str,
    client_secret: str,
    access_token: str,
    render: Optional[Renderer] = None,
) -> Optional[Module]:
    """Set up a Mastodon module, or return None when configuration is missing."""
    if not (server and client_key and client_secret and access_token):
        return None
    return Module(
        publisher=Mastodon(server, client_key, client_secret, access_token, render)
    )