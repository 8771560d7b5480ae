"""Publisher that pushes archived results into a Meilisearch index."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional, Sequence
from urllib.parse import urlsplit

import requests
from packaging.version import InvalidVersion, Version

from .publish import (
    SLOT_IA,
    SLOT_IP,
    SLOT_IS,
    SLOT_PH,
    Collect,
    Module,
    Publisher,
    PublishError,
)

logger = logging.getLogger(__name__)

DEFAULT_INDEXING = "capsules"
PRIMARY_KEY = "id"
TIMEOUT = 10.0
USER_AGENT = "WaybackArchiver/1.0"
CONTENT_TYPE = "application/json"

# Sortable attributes are updated with PUT from this server version on.
_PUT_SORTABLE_SINCE = Version("0.28")

_SLOT_FIELDS = {SLOT_IA: "ia", SLOT_IS: "is", SLOT_IP: "ip", SLOT_PH: "ph"}


class MeiliError(PublishError):
    """Raised when talking to the Meilisearch server fails."""


class _IndexNotFoundError(MeiliError):
    def __init__(self) -> None:
        super().__init__(f"indexing {DEFAULT_INDEXING} not found")


class _IndexNotMatchError(MeiliError):
    def __init__(self) -> None:
        super().__init__(f"indexing {DEFAULT_INDEXING} not match")


def _status_text(resp: requests.Response) -> str:
    return f"{resp.status_code} {resp.reason or ''}".rstrip()


class Meili(Publisher):
    """A Meilisearch client that stores collects as documents."""

    def __init__(
        self,
        endpoint: str,
        apikey: str = "",
        indexing: str = "",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint
        self.apikey = apikey
        self.indexing = indexing or DEFAULT_INDEXING
        self.version = ""
        self._session = session if session is not None else requests.Session()

    def setup(self) -> None:
        """Create the index if missing, learn the server version, set sorting."""
        try:
            self.exist_index()
        except _IndexNotFoundError:
            self.create_index()
        self.get_version()
        self.sortable()

    def get_version(self) -> str:
        """Fetch and remember the version of the server."""
        what = "get version"
        resp = self._do("GET", f"{self.endpoint}/version", what)
        if resp.status_code != 200:
            raise MeiliError(f"{what}: request failed: {_status_text(resp)}")
        data = self._decode(resp, what)
        version = data.get("pkgVersion", "")
        self.version = version if isinstance(version, str) else ""
        return self.version

    def exist_index(self) -> None:
        """Raise unless the configured index exists on the server."""
        what = "get index"
        resp = self._do("GET", f"{self.endpoint}/indexes/{self.indexing}", what)
        if resp.status_code == 404:
            raise _IndexNotFoundError()
        if resp.status_code != 200:
            raise MeiliError(f"{what}: request failed: {_status_text(resp)}")
        data = self._decode(resp, what)
        if data.get("uid") != self.indexing:
            raise _IndexNotFoundError()

    def create_index(self) -> None:
        """Create the configured index."""
        what = "create index"
        payload = json.dumps({"uid": self.indexing, "primaryKey": PRIMARY_KEY})
        resp = self._do("POST", f"{self.endpoint}/indexes", what, payload)
        self._check_task(resp, what)

    def sortable(self) -> None:
        """Make the primary key a sortable attribute of the index."""
        what = "set sortable attributes"
        try:
            version = Version(self.version)
        except InvalidVersion as exc:
            raise MeiliError(
                f"{what}: invalid version: {self.version}: {exc}"
            ) from exc
        method = "PUT" if version >= _PUT_SORTABLE_SINCE else "POST"
        url = f"{self.endpoint}/indexes/{self.indexing}/settings/sortable-attributes"
        resp = self._do(method, url, what, json.dumps([PRIMARY_KEY]))
        self._check_task(resp, what)

    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Push one document per source URI of ``cols`` to the index."""
        if not cols:
            raise MeiliError("push documents failed: cols empty")
        what = "push document"
        payload = json.dumps(self.documents(cols))
        url = f"{self.endpoint}/indexes/{self.indexing}/documents"
        try:
            resp = self._session.request(
                "POST", url, data=payload, headers=self._headers(), timeout=TIMEOUT
            )
        except requests.RequestException as exc:
            raise MeiliError(f"{what}: failed: {exc}") from exc
        self._check_task(resp, what)

    def documents(self, cols: Sequence[Collect]) -> list[dict[str, str]]:
        """Build the documents for ``cols``, one per source URI."""
        docs = []
        for src, group in group_by_src(cols).items():
            doc = {"id": uuid.uuid4().hex, "source": src}
            doc.update({field: "" for field in _SLOT_FIELDS.values()})
            for col in group:
                dst = col.dst
                try:
                    urlsplit(dst)
                except ValueError:
                    dst = ""
                field = _SLOT_FIELDS.get(col.arc)
                if field is not None:
                    doc[field] = dst
            docs.append(doc)
        return docs

    def shutdown(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": CONTENT_TYPE, "User-Agent": USER_AGENT}
        if self.apikey:
            headers["Authorization"] = f"Bearer {self.apikey}"
        return headers

    def _do(
        self, method: str, url: str, what: str, payload: Optional[str] = None
    ) -> requests.Response:
        try:
            return self._session.request(
                method, url, data=payload, headers=self._headers(), timeout=TIMEOUT
            )
        except requests.RequestException as exc:
            raise MeiliError(f"{what}: request failed: {exc}") from exc

    @staticmethod
    def _decode(resp: requests.Response, what: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise MeiliError(f"{what}: unmarshal json failed: {exc}") from exc
        if not isinstance(data, dict):
            raise MeiliError(f"{what}: unmarshal json failed: not an object")
        return data

    def _check_task(self, resp: requests.Response, what: str) -> None:
        if resp.status_code != 202:
            raise MeiliError(f"{what}: unexpected status: {_status_text(resp)}")
        data = self._decode(resp, what)
        if data.get("indexUid") != self.indexing:
            raise _IndexNotMatchError()


def group_by_src(cols: Sequence[Collect]) -> dict[str, list[Collect]]:
    """Group collects by their source URI, keeping first-seen order."""
    groups: dict[str, list[Collect]] = {}
    for col in cols:
        groups.setdefault(col.src, []).append(col)
    return groups


def setup_module(
    endpoint: str, apikey: str = "", indexing: str = ""
) -> Optional[Module]:
    """Set up a Meilisearch module, or return None if disabled or unreachable."""
    if not endpoint:
        return None
    publisher = Meili(endpoint, apikey, indexing)
    try:
        publisher.setup()
    except MeiliError as exc:
        logger.error("setup meilisearch failed: %s", exc)
        return None
    return Module(publisher=publisher)