"""Fragment parsing and reassembly for chunked change notifications.

Wire grammar, one notification payload per fragment::

    fragment  = hash ":" count ":" index ":" text
    hash      = 1*<any char except ":">
    count     = 1*DIGIT            ; total pages, >= 1
    index     = 1*DIGIT            ; 1-based, <= count
    text      = *<any char>        ; may contain ":"

Only the first three colons delimit fields. Header fields never contain a
colon, so no escaping is needed for the payload text.
"""

from __future__ import annotations

import logging
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from tablewatch.exceptions import MalformedFragmentError

logger = logging.getLogger(__name__)

_FRAGMENT_RE = re.compile(r"([^:]+):([^:]*):([^:]*):(.*)\Z", re.DOTALL)
_DIGITS_RE = re.compile(r"[0-9]+\Z")
_MAX_HEADER_DIGITS = 9


@dataclass(slots=True, frozen=True)
class Fragment:
    """One parsed notification fragment."""

    hash: str
    page_count: int
    page_index: int
    text: str


def parse_fragment(raw: str) -> Fragment:
    """Parse a raw notification payload into a Fragment.

    Raises:
        MalformedFragmentError: the payload does not follow the grammar.
    """
    if not isinstance(raw, str):
        raise MalformedFragmentError(repr(raw), "payload is not text")
    match = _FRAGMENT_RE.match(raw)
    if match is None:
        if raw.count(":") < 3:
            raise MalformedFragmentError(raw, "expected three ':' delimiters")
        raise MalformedFragmentError(raw, "empty hash")
    msg_hash, count_text, index_text, text = match.groups()
    if not _DIGITS_RE.match(count_text):
        raise MalformedFragmentError(raw, f"page count {count_text!r} is not a decimal integer")
    if not _DIGITS_RE.match(index_text):
        raise MalformedFragmentError(raw, f"page index {index_text!r} is not a decimal integer")
    if len(count_text) > _MAX_HEADER_DIGITS or len(index_text) > _MAX_HEADER_DIGITS:
        raise MalformedFragmentError(raw, "page header number too large")
    page_count = int(count_text)
    page_index = int(index_text)
    if page_count < 1:
        raise MalformedFragmentError(raw, "page count must be at least 1")
    if not 1 <= page_index <= page_count:
        raise MalformedFragmentError(raw, f"page index {page_index} outside 1..{page_count}")
    return Fragment(hash=msg_hash, page_count=page_count, page_index=page_index, text=text)


@dataclass(slots=True)
class PendingMessage:
    """Partially received multi-page message."""

    page_count: int
    created_at: float
    pages: dict[int, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return len(self.pages) == self.page_count

    def join(self) -> str:
        return "".join(self.pages[index] for index in range(1, self.page_count + 1))


class FragmentReassembler:
    """Merge fragments sharing a hash into one message.

    Pending messages are bounded by count, size and age. A message that never
    completes is evicted after ``pending_ttl`` seconds, or earlier when more
    than ``max_pending`` messages are waiting (oldest first). A fragment that
    announces more than ``max_pages`` pages is rejected before anything is
    buffered, and pages are stored only as they arrive.
    """

    def __init__(
        self,
        *,
        max_pending: int = 1000,
        max_pages: int = 1024,
        pending_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_pending = max_pending
        self._max_pages = max_pages
        self._pending_ttl = pending_ttl
        self._clock = clock
        self._pending: OrderedDict[str, PendingMessage] = OrderedDict()
        self.dropped_messages = 0

    def __len__(self) -> int:
        return len(self._pending)

    def ingest(self, raw: str) -> str | None:
        """Feed one raw fragment; return the assembled message once complete.

        Raises:
            MalformedFragmentError: invalid fragment; pending state is unchanged.
        """
        fragment = parse_fragment(raw)
        if fragment.page_count > self._max_pages:
            raise MalformedFragmentError(
                raw, f"page count {fragment.page_count} exceeds limit of {self._max_pages}"
            )
        if fragment.page_count == 1:
            return fragment.text

        now = self._clock()
        self._evict_expired(now)
        pending = self._pending.get(fragment.hash)
        if pending is None:
            pending = PendingMessage(page_count=fragment.page_count, created_at=now)
            self._pending[fragment.hash] = pending
            self._enforce_memory_bound()
        elif pending.page_count != fragment.page_count:
            raise MalformedFragmentError(
                raw,
                f"page count {fragment.page_count} does not match pending count {pending.page_count}",
            )

        pending.pages[fragment.page_index] = fragment.text
        if not pending.complete:
            return None
        del self._pending[fragment.hash]
        return pending.join()

    def clear(self) -> None:
        """Discard every partial message."""
        if self._pending:
            logger.debug("Discarding %d partial messages", len(self._pending))
        self._pending.clear()

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, item in self._pending.items() if now - item.created_at >= self._pending_ttl]
        for key in expired:
            del self._pending[key]
        if expired:
            self.dropped_messages += len(expired)
            logger.warning(
                "tablewatch dropped %d partial messages older than %.1fs",
                len(expired),
                self._pending_ttl,
            )

    def _enforce_memory_bound(self) -> None:
        overflow = len(self._pending) - self._max_pending
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._pending.popitem(last=False)
        self.dropped_messages += overflow
        logger.warning(
            "tablewatch dropped %d partial messages because max_pending=%d",
            overflow,
            self._max_pending,
        )
