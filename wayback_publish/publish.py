"""Publishing service that spreads archived results to registered publishers."""

from __future__ import annotations

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from .pooling import Bucket, Options, Pool, Status

logger = logging.getLogger(__name__)

SLOT_IA = "ia"
SLOT_IS = "is"
SLOT_IP = "ip"
SLOT_PH = "ph"


class PublishError(RuntimeError):
    """Base error of the publishing service."""


class RegistrationError(PublishError):
    """Raised when a publisher is registered twice under the same flag."""


class ArtifactNotFoundError(PublishError, LookupError):
    """Raised when no artifact can be found for a set of collects."""


class Flag(enum.Enum):
    """Identifies the service a publish request comes from or goes to."""

    WEB = 0
    TELEGRAM = 1
    TWITTER = 2
    MASTODON = 3
    DISCORD = 4
    MATRIX = 5
    SLACK = 6
    NOSTR = 7
    IRC = 8
    XMPP = 9
    NOTION = 10
    GITHUB = 11
    MEILI = 12
    OMNIVORE = 13

    def __str__(self) -> str:
        return _FLAG_NAMES.get(self, "unknown")


_FLAG_NAMES = {
    Flag.WEB: "httpd",
    Flag.TELEGRAM: "telegram",
    Flag.TWITTER: "twiter",
    Flag.MASTODON: "mastodon",
    Flag.DISCORD: "discord",
    Flag.MATRIX: "matrix",
    Flag.SLACK: "slack",
    Flag.NOSTR: "nostr",
    Flag.IRC: "irc",
    Flag.NOTION: "notion",
    Flag.GITHUB: "github",
    Flag.MEILI: "meilisearch",
    Flag.OMNIVORE: "omnivore",
}


@dataclass(frozen=True)
class Collect:
    """One archived result: the archive slot, destination and source URIs."""

    arc: str = ""
    dst: str = ""
    src: str = ""
    ext: str = ""


COLLECTS: tuple[Collect, ...] = (
    Collect(
        arc=SLOT_IA,
        dst="https://web.archive.org/web/20211000000001/https://example.com/",
        src="https://example.com/",
        ext=SLOT_IA,
    ),
    Collect(
        arc=SLOT_IS,
        dst="http://archive.today/abcdE",
        src="https://example.com/",
        ext=SLOT_IS,
    ),
    Collect(
        arc=SLOT_IP,
        dst="https://ipfs.io/ipfs/QmTbDmpvQ3cPZG6TA5tnar4ZG6q9JMBYVmX2n3wypMQMtr",
        src="https://example.com/",
        ext=SLOT_IP,
    ),
    Collect(
        arc=SLOT_PH,
        dst="http://telegra.ph/title-01-01",
        src="https://example.com/",
        ext=SLOT_PH,
    ),
)


class Publisher(ABC):
    """Sends archived results to some platform."""

    @abstractmethod
    def publish(self, rdx: Any, cols: Sequence[Collect], *args: str) -> None:
        """Publish the collects; raise on failure."""

    @abstractmethod
    def shutdown(self) -> None:
        """Release the resources held by the publisher."""


@dataclass
class Module:
    """A publisher together with the options and flag it was set up with."""

    publisher: Optional[Publisher] = None
    options: Any = None
    flag: Optional[Flag] = None


SetupFunc = Callable[[Any], Optional[Module]]


class Registry:
    """Holds publisher setup functions and the modules they produce."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._setups: dict[Flag, SetupFunc] = {}
        self._publishers: dict[Flag, Module] = {}

    def register(self, flag: Flag, setup: SetupFunc) -> None:
        """Register the setup function of a publisher under ``flag``."""
        with self._lock:
            if flag in self._setups:
                raise RegistrationError(f"module {flag} registered")
            self._setups[flag] = setup

    def parse(self, options: Any) -> None:
        """Run every registered setup function and keep the modules they return."""
        with self._lock:
            setups = list(self._setups.items())
        for flag, setup in setups:
            module = setup(options)
            if module is None:
                continue
            module.options = options
            module.flag = flag
            with self._lock:
                self._publishers[flag] = module

    def load(self, flag: Flag) -> Module:
        """Return the module set up for ``flag``."""
        with self._lock:
            try:
                return self._publishers[flag]
            except KeyError:
                raise PublishError(f"publisher {flag} not exists") from None

    def each(self) -> Iterator[Module]:
        """Yield every usable module that has been set up."""
        with self._lock:
            flags = list(self._publishers)
        for flag in flags:
            try:
                module = self.load(flag)
            except PublishError as exc:
                logger.warning("load publisher failed: %s", exc)
                continue
            if module.publisher is None:
                logger.error("module %s is nil", flag)
                continue
            yield module

    def __len__(self) -> int:
        with self._lock:
            return len(self._publishers)


class Publish:
    """Runs publish requests for every set-up module on a worker pool."""

    def __init__(
        self,
        registry: Registry,
        options: Any = None,
        timeout: float = 300.0,
        max_retries: int = 2,
    ) -> None:
        self.registry = registry
        self.options = options
        registry.parse(options)
        self.pool = Pool(
            Options(
                timeout=timeout,
                max_retries=max_retries,
                capacity=len(registry),
            )
        )

    def start(self) -> None:
        """Process publish requests; blocks until :meth:`stop` is called."""
        self.pool.roll()

    def stop(self) -> None:
        """Shut down every publisher, wait for the pool to go idle and close it."""
        for module in self.registry.each():
            try:
                module.publisher.shutdown()
            except Exception:
                logger.debug("shutdown of %s failed", module.flag, exc_info=True)

        while self.pool.status() is not Status.IDLE:
            time.sleep(0.01)
        self.pool.close()

    def spread(
        self, rdx: Any, cols: Sequence[Collect], source: Flag, *args: str
    ) -> None:
        """Queue a publish request to every available publisher."""
        for module in self.registry.each():
            self.pool.put(
                Bucket(
                    request=self._request(module, rdx, cols, source, args),
                    fallback=lambda _cancel: None,
                )
            )

    @staticmethod
    def _request(
        module: Module,
        rdx: Any,
        cols: Sequence[Collect],
        source: Flag,
        args: tuple[str, ...],
    ) -> Callable[[threading.Event], None]:
        def request(_cancel: threading.Event) -> None:
            logger.info(
                "requesting publishing from [%s] to [%s]...", source, module.flag
            )
            try:
                module.publisher.publish(rdx, cols, *args)
            except Exception as exc:
                logger.error(
                    "requesting publishing from [%s] to [%s] failed: %s",
                    source,
                    module.flag,
                    exc,
                )
                raise

        return request


def artifact(rdx: Optional[Mapping[str, Any]], cols: Sequence[Collect]) -> Any:
    """Return the artifact stored in ``rdx`` for the source of the first collect."""
    if not cols:
        raise ArtifactNotFoundError("no collect")
    uri = cols[0].src
    if rdx is not None and uri in rdx:
        return rdx[uri]
    raise ArtifactNotFoundError("reduxer data not found")