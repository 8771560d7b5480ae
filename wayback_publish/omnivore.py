"""Publisher that saves the source URI of archived results to Omnivore."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional, Sequence

import requests

from .publish import Collect, Module, Publisher, PublishError

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://api-prod.omnivore.app/api/graphql"
DEFAULT_USER_AGENT = "WaybackArchiver/1.0"
TIMEOUT = 10.0

MUTATION = """
mutation SaveUrl($input: SaveUrlInput!) {
  saveUrl(input: $input) {
    ... on SaveSuccess {
      url
      clientRequestId
    }
    ... on SaveError {
      errorCodes
      message
    }
  }
}
"""


class OmnivoreError(PublishError):
    """Raised when saving a URL to Omnivore fails."""


class Omnivore(Publisher):
    """An Omnivore client that saves the first collect's source URI."""

    def __init__(
        self,
        apikey: str,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        endpoint: str = DEFAULT_API_ENDPOINT,
    ) -> None:
        if not apikey:
            raise ValueError("Omnivore integration access token is required")
        self.apikey = apikey
        self.user_agent = user_agent
        self.endpoint = endpoint
        self._session = session if session is not None else requests.Session()

    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Save the source URI of the first collect; raise on failure."""
        if not cols:
            raise OmnivoreError("publish to omnivore: collects empty")

        payload = {
            "query": MUTATION,
            "variables": {
                "input": {
                    "clientRequestId": str(uuid.uuid4()),
                    "source": "api",
                    "url": cols[0].src,
                }
            },
        }
        headers = {
            "Authorization": self.apikey,
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
        try:
            resp = self._session.post(
                self.endpoint,
                data=json.dumps(payload),
                headers=headers,
                timeout=TIMEOUT,
            )
        except requests.RequestException as exc:
            raise OmnivoreError(f"omnivore: request failed: {exc}") from exc

        text = resp.text
        if resp.status_code >= 400:
            message = text
            try:
                message = json.loads(text)["errors"][0]["message"]
            except (ValueError, KeyError, IndexError, TypeError):
                pass
            raise OmnivoreError(
                f"omnivore: failed to save URL: status={resp.status_code} {message}"
            )

        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise OmnivoreError(
                "omnivore: failed to parse response, however the request appears "
                f"successful, is the url correct?: status={resp.status_code} {text}"
            )
        logger.debug("omnivore saved url: %s", data)

    def shutdown(self) -> None:
        """Close the HTTP session."""
        self._session.close()


def setup_module(apikey: str, user_agent: str = DEFAULT_USER_AGENT) -> Optional[Module]:
    """Set up an Omnivore module, or return None when no API key is given."""
    if not apikey:
        return None
    return Module(publisher=Omnivore(apikey, user_agent))