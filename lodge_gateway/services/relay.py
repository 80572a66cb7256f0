"""Conversational relay: pipe the upstream event stream through, or degrade to one JSON document.

Each request gets its own ``RelaySession``, which walks

    ROUTING -> CALLING -> STREAMING_THROUGH | BUFFERING -> CLOSED

and owns the upstream connection until it reaches CLOSED.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from lodge_gateway import constants
from lodge_gateway.adapters import openai_client
from lodge_gateway.adapters.types import (
	ChatMessage,
	EndpointConfig,
	ProviderCallRequest,
	ProviderCallResult,
	UpstreamStream,
	UpstreamStreamError,
)
from lodge_gateway.errors import transport_error
from lodge_gateway.schemas import ChatRequest
from lodge_gateway.services import prompts, provider_config
from lodge_gateway.services.extraction import extract_sources, extract_text
from lodge_gateway.services.routing import RouteFlags, route


LOGGER = logging.getLogger(__name__)

OpenStreamFn = Callable[[EndpointConfig, ProviderCallRequest], ProviderCallResult]
CallFn = Callable[[EndpointConfig, ProviderCallRequest], ProviderCallResult]


class RelayState(str, Enum):
	ROUTING = "routing"
	CALLING = "calling"
	STREAMING_THROUGH = "streaming_through"
	BUFFERING = "buffering"
	CLOSED = "closed"


@dataclass
class RelayReply:
	kind: str  # stream | json | text
	status_code: int = 200
	json_body: Optional[Dict[str, Any]] = None
	text_body: str = ""
	media_type: str = "application/json"
	chunks: Optional["RelayChunks"] = None


def wants_event_stream(accept_header: Optional[str]) -> bool:
	return constants.EVENT_STREAM_MEDIA_TYPE in (accept_header or "")


def encode_sse(event: str, data: Dict[str, Any]) -> bytes:
	payload = json.dumps(data, ensure_ascii=False)
	return f"event: {event}\ndata: {payload}\n\n".encode("utf-8")


def build_chat_request(payload: ChatRequest, endpoint: EndpointConfig) -> ProviderCallRequest:
	messages: List[ChatMessage] = [ChatMessage(role="system", content=prompts.chat_system(payload.message))]
	for turn in payload.history or []:
		messages.append(ChatMessage(role=turn.role, content=turn.content))
	messages.append(ChatMessage(role="user", content=payload.message))
	return ProviderCallRequest(
		provider_id=endpoint.provider_id,
		model=endpoint.model,
		messages=tuple(messages),
		web_search=payload.research_mode,
		allowed_domains=tuple(payload.allowed_domains or ()) if payload.research_mode else (),
		include_sources=payload.research_mode,
	)


def buffered_envelope(result: ProviderCallResult) -> RelayReply:
	if result.parsed_json is None:
		return RelayReply(kind="text", text_body=result.raw_text, media_type="application/json")
	document = result.parsed_json
	return RelayReply(
		kind="json",
		json_body={
			"ok": True,
			"text": extract_text(document),
			"sources": extract_sources(document),
			"raw": document,
		},
	)


def passthrough(result: ProviderCallResult) -> RelayReply:
	return RelayReply(
		kind="text",
		status_code=result.http_status,
		text_body=result.raw_text,
		media_type="text/plain",
	)


class RelaySession:
	def __init__(
		self,
		payload: ChatRequest,
		*,
		wants_stream: bool,
		call: CallFn = openai_client.call,
		open_stream: OpenStreamFn = openai_client.open_stream,
	):
		self._payload = payload
		self._wants_stream = wants_stream
		self._call = call
		self._open_stream = open_stream
		self.state = RelayState.ROUTING
		self.transitions: List[RelayState] = [RelayState.ROUTING]

	def _enter(self, state: RelayState) -> None:
		LOGGER.debug("relay %s -> %s", self.state.value, state.value)
		self.state = state
		self.transitions.append(state)

	def _finish(self, reply: RelayReply) -> RelayReply:
		self._enter(RelayState.CLOSED)
		return reply

	def run(self) -> RelayReply:
		provider_id = route("chat", RouteFlags(need_web_search=self._payload.research_mode))
		endpoint = provider_config.require_endpoint(provider_id)
		request = build_chat_request(self._payload, endpoint)

		self._enter(RelayState.CALLING)
		if not self._wants_stream:
			result = self._call(endpoint, request)
			if result.is_transport_failure:
				self._enter(RelayState.CLOSED)
				raise transport_error(result.raw_text)
			self._enter(RelayState.BUFFERING)
			if not result.succeeded:
				return self._finish(passthrough(result))
			return self._finish(buffered_envelope(result))

		opened = self._open_stream(endpoint, request)
		if opened.is_transport_failure:
			self._enter(RelayState.CLOSED)
			raise transport_error(opened.raw_text)
		if opened.succeeded and opened.body_stream is not None:
			self._enter(RelayState.STREAMING_THROUGH)
			return RelayReply(
				kind="stream",
				media_type=constants.EVENT_STREAM_MEDIA_TYPE,
				chunks=RelayChunks(self, opened.body_stream),
			)

		self._enter(RelayState.BUFFERING)
		LOGGER.warning("chat stream refused by %s (status=%s); retrying buffered", provider_id, opened.http_status)
		fallback = self._call(endpoint, request)
		if fallback.succeeded:
			return self._finish(buffered_envelope(fallback))
		return self._finish(passthrough(opened))

	def _forward(self, stream: UpstreamStream) -> Iterator[bytes]:
		try:
			for chunk in stream.iter_bytes():
				yield chunk
		except UpstreamStreamError as exc:
			yield encode_sse(
				"error",
				{"type": "error", "ok": False, "error": "UPSTREAM_STREAM_FAILED", "details": str(exc)},
			)
		finally:
			self.release(stream)

	def release(self, stream: UpstreamStream) -> None:
		stream.close()
		if self.state != RelayState.CLOSED:
			self._enter(RelayState.CLOSED)


class RelayChunks:
	"""Forwarded upstream bytes. ``close()`` releases the upstream even if iteration never started."""

	def __init__(self, session: RelaySession, stream: UpstreamStream):
		self._session = session
		self._stream = stream
		self._chunks = session._forward(stream)

	def __iter__(self) -> "RelayChunks":
		return self

	def __next__(self) -> bytes:
		return next(self._chunks)

	def close(self) -> None:
		self._chunks.close()
		self._session.release(self._stream)


def relay_chat(
	payload: ChatRequest,
	*,
	accept: Optional[str],
	call: CallFn = openai_client.call,
	open_stream: OpenStreamFn = openai_client.open_stream,
) -> RelayReply:
	session = RelaySession(payload, wants_stream=wants_event_stream(accept), call=call, open_stream=open_stream)
	return session.run()
