"""Server-sent event framing: raw transport fragments → decoded JSON records.

The decoder knows nothing about chat semantics. It only buffers text, splits
it on line boundaries and turns every ``data:`` line into a JSON record.
"""

import codecs
import json
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from .logger import get_logger

_log = get_logger(__name__)

__all__ = ["FrameDecoder", "iter_records", "DATA_PREFIX", "DONE_SENTINEL"]

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

Fragment = Union[str, bytes]


class FrameDecoder:
    """Incremental line splitter for ``data:`` framed streams.

    ``feed()`` accepts fragments split anywhere (mid-line, or for bytes even
    mid UTF-8 sequence) and returns the records completed by that fragment.
    Once the ``[DONE]`` sentinel has been seen, ``done`` is True and further
    input is ignored.
    """

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.done = False
        self.dropped = 0

    def feed(self, fragment: Fragment) -> List[Dict[str, Any]]:
        if self.done or not fragment:
            return []
        if isinstance(fragment, bytes):
            fragment = self._utf8.decode(fragment)
        self._buffer += fragment

        records = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            record = self._decode_line(line)
            if record is not None:
                records.append(record)
        return records

    def finish(self) -> List[Dict[str, Any]]:
        """Flush the trailing unterminated line, if any."""
        if self.done:
            return []
        self._buffer += self._utf8.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        record = self._decode_line(line)
        self.done = True
        return [record] if record is not None else []

    def _decode_line(self, line: str) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return None
        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            self.dropped += 1
            _log.debug("Dropped malformed stream record: %.200s", payload)
            return None
        if not isinstance(record, dict):
            self.dropped += 1
            _log.debug("Dropped non-object stream record: %.200s", payload)
            return None
        return record


def iter_records(fragments: Iterable[Fragment]) -> Iterator[Dict[str, Any]]:
    """Lazily decode records from an iterable of transport fragments.

    Records are yielded as soon as their line is complete, so a slow
    transport overlaps with whatever consumes the records.
    """
    decoder = FrameDecoder()
    try:
        for fragment in fragments:
            yield from decoder.feed(fragment)
            if decoder.done:
                return
        yield from decoder.finish()
    finally:
        if decoder.dropped:
            _log.warning("Dropped %d malformed stream record(s)", decoder.dropped)
