"""Publisher that opens GitHub issues for archived results."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
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

DEFAULT_API_URL = "https://api.github.com"
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
        lines.append(f"**[{_SLOT_NAMES.get(col.arc, col.arc)}]({col.dst})**:")
        lines.append(f"> source: {col.src}")
        lines.append(f"> archived: {col.dst}")
        lines.append("")
    return "\n".join(lines).strip()


def _title(rdx: Any, cols: Sequence[Collect]) -> str:
    try:
        art = artifact(rdx, cols)
    except ArtifactNotFoundError:
        return ""
    title = art.get("title") if isinstance(art, Mapping) else getattr(art, "title", "")
    return str(title or "").strip()


class GitHub(Publisher):
    """Creates an issue in a GitHub repository for each publish request."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str = "",
        render: Optional[Renderer] = None,
        session: Optional[requests.Session] = None,
        api_url: str = DEFAULT_API_URL,
    ) -> None:
        if not token or not owner:
            raise ValueError("GitHub personal access token is required")
        self.token = token
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self._render = render if render is not None else _render
        if session is None:
            # The user must grant repo:public_repo, or repo for private repositories.
            session = requests.Session()
            session.auth = (owner, token)
        self._session = session

    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Open an issue describing ``cols``; raise on failure."""
        if not cols:
            raise PublishError("publish to github: collects empty")
        try:
            artifact(rdx, cols)
        except ArtifactNotFoundError as exc:
            logger.warning("extract data failed: %s", exc)

        head = _title(rdx, cols)
        body = self._render(cols, rdx)
        if not head:
            head = "Published at " + datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        if not self.to_issues(head, body):
            raise PublishError("publish to github failed")

    def to_issues(self, head: str, body: str) -> bool:
        """Create an issue with the given title and body; report success."""
        if not body:
            logger.warning("github validation failed: body can't be blank")
            return False
        url = f"{self.api_url}/repos/{self.owner}/{self.repo}/issues"
        try:
            resp = self._session.post(
                url,
                json={"title": head, "body": body},
                headers={"Accept": "application/vnd.github.v3+json"},
                timeout=TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("create issue failed: %s", exc)
            return False
        if not 200 <= resp.status_code < 300:
            logger.error("create issue failed: %s %s", resp.status_code, resp.text)
            return False
        logger.debug("created issue: %s", resp.text)
        return True

    def shutdown(self) -> None:
        """Close the HTTP session."""
        self._session.close()


def setup_module(
    token: str, owner: str, repo: str = "", render: Optional[Renderer] = None
) -> Optional[Module]:
    """Set up a GitHub module, or return None when credentials are missing."""
    if not token or not owner:
        return None
    return Module(publisher=GitHub(token, owner, repo, render))