"""Incremental parser for ``text/event-stream`` bodies.

Chunks may split frames, lines, or multi-byte characters anywhere; the parser
keeps one text buffer and only cuts at blank-line frame boundaries. Every
session reports completion exactly once: on the first ``[DONE]`` sentinel or
completion-typed event, or at end of input if upstream never sent one.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Literal, Optional

from lodge_gateway import constants
from lodge_gateway.services.extraction import extract_delta, extract_event_sources, is_completion_event


LOGGER = logging.getLogger(__name__)

EventKind = Literal["delta", "sources", "done", "error", "ignored"]


@dataclass(frozen=True)
class StreamEvent:
	kind: EventKind
	payload: Any = None


@dataclass(frozen=True)
class RawFrame:
	event: Optional[str]
	data: str


def parse_frame(raw: str) -> Optional[RawFrame]:
	"""Collect the ``event`` name and ``data`` lines of one frame; ``None`` when it has no data."""
	event_name: Optional[str] = None
	data_lines: List[str] = []
	for line in raw.split("\n"):
		line = line.rstrip("\r")
		if not line or line.startswith(":"):
			continue
		if line.startswith("data:"):
			value = line[len("data:") :]
			data_lines.append(value[1:] if value.startswith(" ") else value)
		elif line.startswith("event:"):
			event_name = line[len("event:") :].strip()
	if not data_lines:
		return None
	return RawFrame(event=event_name, data="\n".join(data_lines))


class FrameParser:
	def __init__(self) -> None:
		self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
		self._buffer = ""
		self.completed = False
		self.frames_seen = 0

	def _done(self) -> List[StreamEvent]:
		if self.completed:
			return []
		self.completed = True
		return [StreamEvent("done")]

	def _events_for(self, frame: RawFrame) -> List[StreamEvent]:
		self.frames_seen += 1
		if frame.data == constants.STREAM_DONE_SENTINEL:
			return self._done() or [StreamEvent("ignored", frame.data)]
		try:
			document = json.loads(frame.data)
		except json.JSONDecodeError:
			return [StreamEvent("ignored", frame.data)]

		if frame.event == "error" or (isinstance(document, dict) and document.get("type") == "error"):
			return [StreamEvent("error", document)]

		events: List[StreamEvent] = []
		delta = extract_delta(document)
		if delta is not None:
			events.append(StreamEvent("delta", delta))
		sources = extract_event_sources(document)
		if sources is not None:
			events.append(StreamEvent("sources", sources))
		if is_completion_event(document):
			events.extend(self._done())
		return events or [StreamEvent("ignored", document)]

	def _drain(self) -> List[StreamEvent]:
		events: List[StreamEvent] = []
		while True:
			index = self._buffer.find("\n\n")
			if index == -1:
				return events
			raw = self._buffer[:index]
			self._buffer = self._buffer[index + 2 :]
			frame = parse_frame(raw)
			if frame is not None:
				events.extend(self._events_for(frame))

	def feed(self, chunk: bytes) -> List[StreamEvent]:
		self._buffer += self._decoder.decode(chunk)
		self._buffer = self._buffer.replace("\r\n", "\n")
		return self._drain()

	def finish(self) -> List[StreamEvent]:
		self._buffer += self._decoder.decode(b"", final=True)
		self._buffer = self._buffer.replace("\r\n", "\n")
		events = self._drain()
		remainder, self._buffer = self._buffer, ""
		frame = parse_frame(remainder)
		if frame is not None:
			events.extend(self._events_for(frame))
		if not self.completed:
			LOGGER.debug("stream ended without a completion signal after %d frame(s)", self.frames_seen)
		events.extend(self._done())
		return events


def iter_stream_events(chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
	"""Lazily turn byte chunks into events. Stopping early closes ``chunks`` when it is a generator."""
	parser = FrameParser()
	source = iter(chunks)
	try:
		for chunk in source:
			yield from parser.feed(chunk)
		yield from parser.finish()
	finally:
		close = getattr(source, "close", None)
		if callable(close):
			close()


def dispatch_events(
	events: Iterable[StreamEvent],
	*,
	on_delta: Callable[[str], None],
	on_sources: Optional[Callable[[List[dict]], None]] = None,
	on_done: Optional[Callable[[], None]] = None,
	on_error: Optional[Callable[[Any], None]] = None,
) -> None:
	for event in events:
		if event.kind == "delta":
			on_delta(event.payload)
		elif event.kind == "sources" and on_sources is not None:
			on_sources(event.payload)
		elif event.kind == "done" and on_done is not None:
			on_done()
		elif event.kind == "error" and on_error is not None:
			on_error(event.payload)


def consume_stream(
	chunks: Iterable[bytes],
	*,
	on_delta: Callable[[str], None],
	on_sources: Optional[Callable[[List[dict]], None]] = None,
	on_done: Optional[Callable[[], None]] = None,
	on_error: Optional[Callable[[Any], None]] = None,
) -> None:
	dispatch_events(
		iter_stream_events(chunks),
		on_delta=on_delta,
		on_sources=on_sources,
		on_done=on_done,
		on_error=on_error,
	)
