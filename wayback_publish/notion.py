"""Publisher that creates Notion database pages for archived results."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping
from datetime import datetime
from html import escape as _html_escape
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

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

DEFAULT_API_URL = "https://api.notion.com"
NOTION_VERSION = "2022-06-28"
TIMEOUT = 30.0
DOWNLOAD_TIMEOUT = 30.0
CHILDREN_LIMIT = 100

Renderer = Callable[[Sequence[Collect], Any], str]
Uploader = Callable[[str], str]
Block = dict[str, Any]

_SLOT_NAMES = {
    SLOT_IA: "Internet Archive",
    SLOT_IS: "archive.today",
    SLOT_IP: "IPFS",
    SLOT_PH: "Telegraph",
}

_TEXT_ESCAPES = str.maketrans(
    {"&": "&amp;", "'": "&#39;", "<": "&lt;", ">": "&gt;", '"': "&#34;"}
)


def _escape(text: str) -> str:
    return text.translate(_TEXT_ESCAPES)


def _slot_name(arc: str) -> str:
    return _SLOT_NAMES.get(arc, arc)


def _render(cols: Sequence[Collect], rdx: Any) -> str:
    parts = []
    for col in cols:
        dst = _html_escape(col.dst)
        parts.append(
            f"<p><b>{_html_escape(_slot_name(col.arc))}</b>: "
            f'<a href="{dst}">{dst}</a></p>'
        )
    try:
        art = artifact(rdx, cols)
    except ArtifactNotFoundError:
        art = None
    if isinstance(art, Mapping) and art.get("content"):
        parts.append(str(art["content"]))
    return "\n".join(parts)


def _title(rdx: Any, cols: Sequence[Collect]) -> str:
    try:
        art = artifact(rdx, cols)
    except ArtifactNotFoundError:
        return ""
    title = art.get("title") if isinstance(art, Mapping) else getattr(art, "title", "")
    return str(title or "").strip()


def _rich_text(content: str, link: str = "", bold: bool = False) -> dict[str, Any]:
    text: dict[str, Any] = {"content": content}
    if link:
        text["link"] = {"url": link}
    item: dict[str, Any] = {"type": "text", "text": text}
    if bold:
        item["annotations"] = {"bold": True}
    return item


def _block(kind: str, body: dict[str, Any]) -> Block:
    return {"object": "block", "type": kind, kind: body}


def _divider() -> Block:
    return _block("divider", {})


def _paragraph(content: str) -> Block:
    return _block("paragraph", {"rich_text": [_rich_text(content)]})


def _external(kind: str, url: str) -> Block:
    return _block(kind, {"type": "external", "external": {"url": url}})


def _table_row(label: str, value: str) -> Block:
    return _block(
        "table_row",
        {"cells": [[_rich_text(label, bold=True)], [_rich_text(value, link=value)]]},
    )


def upload_image(
    uploader: Uploader, src: str, session: Optional[requests.Session] = None
) -> str:
    """Download ``src``, hand the file to ``uploader`` and return the hosted URL."""
    try:
        parts = urlsplit(src)
    except ValueError as exc:
        raise PublishError(f"parse url {src}: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise PublishError(f"parse url {src}: not an absolute URL")

    client = session if session is not None else requests.Session()
    fd, path = tempfile.mkstemp()
    try:
        with os.fdopen(fd, "wb") as fh:
            try:
                resp = client.get(src, timeout=DOWNLOAD_TIMEOUT, stream=True)
                resp.raise_for_status()
                for chunk in resp.iter_content(chunk_size=65536):
                    fh.write(chunk)
            except requests.RequestException as exc:
                raise PublishError(f"download url {src}: {exc}") from exc
        try:
            newurl = uploader(path)
        except Exception as exc:
            raise PublishError(f"upload file {path}: {exc}") from exc
        if not newurl:
            raise PublishError(f"upload file {path}: empty url")
    finally:
        try:
            os.remove(path)
        except OSError:
            pass
    return f"{newurl}?orig={src}"


def traverse_nodes(
    nodes: Iterable[Any], uploader: Optional[Uploader] = None
) -> list[Block]:
    """Turn parsed HTML nodes into Notion blocks, depth first."""
    blocks: list[Block] = []
    for node in nodes:
        if isinstance(node, NavigableString):
            if not isinstance(node, PreformattedString) and node.strip():
                blocks.append(_paragraph(_escape(str(node))))
            continue
        if not isinstance(node, Tag):
            continue

        src = node.get("src")
        src = src if isinstance(src, str) else ""
        if node.name == "img" and src.strip():
            url = src
            if uploader is not None:
                try:
                    url = upload_image(uploader, src)
                except PublishError as exc:
                    logger.debug("upload image failed: %s", exc)
            blocks.append(_external("image", url))
        elif node.name == "embed" and src.strip():
            blocks.append(_block("embed", {"url": src}))
        elif node.name == "audio" and src.strip():
            blocks.append(_external("audio", src))
        elif node.name == "video":
            for source in node.find_all("source"):
                source_src = source.get("src")
                if isinstance(source_src, str) and source_src.strip():
                    blocks.append(_external("video", source_src))
        elif node.name == "pre":
            blocks.append(
                _block(
                    "code",
                    {"rich_text": [_rich_text(node.get_text())], "language": "plain text"},
                )
            )
        blocks.extend(traverse_nodes(node.contents, uploader))
    return blocks


def _chunks(children: Sequence[Block]) -> Iterator[list[Block]]:
    total = len(children)
    count = 1 if total <= CHILDREN_LIMIT else total // CHILDREN_LIMIT + 1
    for i in range(count):
        start = i * CHILDREN_LIMIT
        stop = min((i + 1) * CHILDREN_LIMIT - 1, total)
        chunk = list(children[start:stop])
        if chunk:
            yield chunk


class Notion(Publisher):
    """Creates a page in a Notion database for each publish request."""

    def __init__(
        self,
        token: str,
        database_id: str = "",
        render: Optional[Renderer] = None,
        uploader: Optional[Uploader] = None,
        session: Optional[requests.Session] = None,
        api_url: str = DEFAULT_API_URL,
    ) -> None:
        if not token:
            raise ValueError("Notion integration access token is required")
        self.token = token
        self.database_id = database_id
        self.uploader = uploader
        self.api_url = api_url.rstrip("/")
        self._render = render if render is not None else _render
        self._session = session if session is not None else requests.Session()

    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Create a page describing ``cols`` and append its content; raise on failure."""
        if not cols:
            raise PublishError("publish to notion: collects empty")

        head = _title(rdx, cols)
        body = self._render(cols, rdx)
        if not head:
            head = "Published at " + datetime.now().strftime("%Y-%m-%dT%H:%M:%S")

        params, children = self.params(cols, head, body)
        if not self.database_id:
            raise PublishError("notion page params invalid: parent id is required")

        page = self._call("POST", "/v1/pages", params, "create page failed")
        page_id = page.get("id")
        if not page_id:
            raise PublishError("create page failed: response has no page id")
        logger.info("created page: %s", page.get("url", ""))

        failures = []
        for chunk in _chunks(children):
            try:
                self._call(
                    "PATCH",
                    f"/v1/blocks/{page_id}/children",
                    {"children": chunk},
                    "append children block failed",
                )
            except PublishError as exc:
                failures.append(str(exc))
                continue
            logger.info("append children block successful")
        if failures:
            raise PublishError("; ".join(failures))

    def params(
        self, cols: Sequence[Collect], head: str, body: str
    ) -> tuple[dict[str, Any], list[Block]]:
        """Build the page creation parameters and the blocks of its content."""
        table: list[Block] = []
        if cols:
            table.append(_table_row("Source", cols[0].src))
        table.extend(_table_row(_slot_name(col.arc), col.dst) for col in cols)

        children: list[Block] = [
            _divider(),
            _block(
                "table",
                {
                    "table_width": 2,
                    "has_column_header": False,
                    "has_row_header": True,
                    "children": table,
                },
            ),
            _divider(),
        ]
        soup = BeautifulSoup(body, "html.parser")
        children.extend(traverse_nodes(soup.contents, self.uploader))

        params = {
            "parent": {"type": "database_id", "database_id": self.database_id},
            "properties": {
                "title": {"title": [{"type": "text", "text": {"content": head}}]}
            },
        }
        return params, children

    def shutdown(self) -> None:
        """Nothing to release."""

    def _call(
        self, method: str, path: str, payload: dict[str, Any], what: str
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        try:
            resp = self._session.request(
                method,
                f"{self.api_url}{path}",
                json=payload,
                headers=headers,
                timeout=TIMEOUT,
            )
        except requests.RequestException as exc:
            raise PublishError(f"{what}: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise PublishError(f"{what}: {resp.status_code} {resp.text}")
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


def setup_module(
    token: str,
    database_id: str = "",
    render: Optional[Renderer] = None,
    uploader: Optional[Uploader] = None,
) -> Optional[Module]:
    """Set up a Notion module, or return None when no token is given."""
    if not token:
        return None
    return Module(publisher=Notion(token, database_id, render, uploader))