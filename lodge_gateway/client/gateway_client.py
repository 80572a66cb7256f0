from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from lodge_gateway import constants
from lodge_gateway.client.frame_parser import StreamEvent, dispatch_events, iter_stream_events


LOGGER = logging.getLogger(__name__)

_ERROR_PREVIEW_CHARS = 500


class GatewayClientError(Exception):
	def __init__(self, *, status_code: int, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.message = message


def _error_message(response: httpx.Response, text: str) -> str:
	try:
		payload = json.loads(text) if text else None
	except json.JSONDecodeError:
		payload = None
	if isinstance(payload, dict):
		message = payload.get("error") or payload.get("message")
		if isinstance(message, str) and message:
			return message
	if text:
		return f"Request failed ({response.status_code}): {text[:_ERROR_PREVIEW_CHARS]}"
	return f"Request failed ({response.status_code})"


def _buffered_events(envelope: Any) -> List[StreamEvent]:
	events: List[StreamEvent] = []
	if isinstance(envelope, dict):
		text = envelope.get("text")
		if isinstance(text, str) and text:
			events.append(StreamEvent("delta", text))
		sources = envelope.get("sources")
		if isinstance(sources, list) and sources:
			events.append(StreamEvent("sources", sources))
	events.append(StreamEvent("done"))
	return events


class GatewayClient:
	"""Browser-side calls to the gateway, for scripts and tests.

	Pass ``http_client`` to reuse a configured ``httpx.Client``
	(``fastapi.testclient.TestClient`` works too).
	"""

	def __init__(
		self,
		base_url: str = "http://127.0.0.1:8788",
		*,
		http_client: Optional[httpx.Client] = None,
		timeout_s: float = 60.0,
	):
		self._owns_client = http_client is None
		self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout_s)

	def close(self) -> None:
		if self._owns_client:
			self._http.close()

	def __enter__(self) -> "GatewayClient":
		return self

	def __exit__(self, *exc_info: Any) -> None:
		self.close()

	def post_json(self, path: str, body: Any) -> Any:
		response = self._http.post(path, json=body)
		text = response.text
		if not response.is_success:
			raise GatewayClientError(status_code=response.status_code, message=_error_message(response, text))
		if not text:
			return None
		try:
			return json.loads(text)
		except json.JSONDecodeError:
			return None

	def iter_chat_events(
		self,
		message: str,
		*,
		history: Optional[List[Dict[str, str]]] = None,
		research_mode: bool = False,
		allowed_domains: Optional[List[str]] = None,
	) -> Iterator[StreamEvent]:
		body: Dict[str, Any] = {"message": message, "researchMode": research_mode}
		if history:
			body["history"] = history
		if allowed_domains:
			body["allowedDomains"] = allowed_domains
		headers = {"accept": constants.EVENT_STREAM_MEDIA_TYPE}
		with self._http.stream("POST", "/api/ai/chat", json=body, headers=headers) as response:
			if not response.is_success:
				text = response.read().decode("utf-8", errors="replace")
				raise GatewayClientError(status_code=response.status_code, message=_error_message(response, text))
			content_type = response.headers.get("content-type", "")
			if constants.EVENT_STREAM_MEDIA_TYPE not in content_type:
				LOGGER.info("chat answered with %s instead of a stream", content_type or "no content type")
				raw = response.read().decode("utf-8", errors="replace")
				try:
					envelope = json.loads(raw)
				except json.JSONDecodeError:
					envelope = {"text": raw}
				yield from _buffered_events(envelope)
				return
			yield from iter_stream_events(response.iter_bytes())

	def stream_chat(
		self,
		message: str,
		*,
		on_delta: Callable[[str], None],
		on_sources: Optional[Callable[[List[dict]], None]] = None,
		on_done: Optional[Callable[[], None]] = None,
		on_error: Optional[Callable[[Any], None]] = None,
		history: Optional[List[Dict[str, str]]] = None,
		research_mode: bool = False,
		allowed_domains: Optional[List[str]] = None,
	) -> None:
		dispatch_events(
			self.iter_chat_events(message, history=history, research_mode=research_mode, allowed_domains=allowed_domains),
			on_delta=on_delta,
			on_sources=on_sources,
			on_done=on_done,
			on_error=on_error,
		)

	def plan(self, context: Any, *, listing: Optional[Dict[str, Any]] = None) -> Any:
		body: Dict[str, Any] = {"context": context}
		if listing is not None:
			body["listing"] = listing
		return self.post_json("/api/ai/plan", body)

	def suggest(self, question_id: str, choices: List[Dict[str, Any]], context: Any = None) -> Any:
		return self.post_json("/api/ai/suggest", {"questionId": question_id, "choices": choices, "context": context})

	def explain(self, topic: str, context: Any = None) -> Any:
		return self.post_json("/api/ai/explain", {"topic": topic, "context": context})

	def research(self, query: str, *, serious_mode: bool = False, allowed_domains: Optional[List[str]] = None) -> Any:
		body: Dict[str, Any] = {"query": query, "seriousMode": serious_mode}
		if allowed_domains:
			body["allowedDomains"] = allowed_domains
		return self.post_json("/api/ai/research", body)
