from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, Literal, Optional, Tuple


ApiStyle = Literal["responses", "chat_completions"]
MessageRole = Literal["system", "user", "assistant"]
TransportFailure = Literal["timeout", "connection"]


@dataclass(frozen=True)
class EndpointConfig:
	provider_id: str
	api_style: ApiStyle
	base_url: str
	api_key: str
	model: str
	timeout_s: float

	def __repr__(self) -> str:
		return (
			f"EndpointConfig(provider_id={self.provider_id!r}, api_style={self.api_style!r}, "
			f"base_url={self.base_url!r}, model={self.model!r})"
		)


@dataclass(frozen=True)
class ChatMessage:
	role: MessageRole
	content: str

	def as_dict(self) -> Dict[str, str]:
		return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ProviderCallRequest:
	provider_id: str
	model: str
	messages: Tuple[ChatMessage, ...]
	web_search: bool = False
	allowed_domains: Tuple[str, ...] = ()
	include_sources: bool = False
	instructions: Optional[str] = None
	max_tool_calls: Optional[int] = None
	temperature: Optional[float] = None
	stream: bool = False

	def with_stream(self, stream: bool) -> "ProviderCallRequest":
		return replace(self, stream=stream)

	def with_nudge(self, nudge: str) -> "ProviderCallRequest":
		"""Copy with ``nudge`` appended to the last user message."""
		messages = list(self.messages)
		for index in range(len(messages) - 1, -1, -1):
			if messages[index].role == "user":
				messages[index] = ChatMessage(role="user", content=f"{messages[index].content}\n\n{nudge}")
				break
		else:
			messages.append(ChatMessage(role="user", content=nudge))
		return replace(self, messages=tuple(messages))


class UpstreamStreamError(Exception):
	"""The upstream byte stream broke after its response headers arrived."""


class UpstreamStream:
	"""Raw upstream byte stream; ``close()`` releases the connection and may be called repeatedly."""

	def __init__(self, chunks: Iterator[bytes], closer: Callable[[], None]):
		self._chunks = chunks
		self._closer = closer
		self.closed = False

	def iter_bytes(self) -> Iterator[bytes]:
		for chunk in self._chunks:
			if chunk:
				yield chunk

	def close(self) -> None:
		if self.closed:
			return
		self.closed = True
		self._closer()


@dataclass(frozen=True)
class ProviderCallResult:
	provider_id: str
	api_style: ApiStyle
	succeeded: bool
	http_status: int
	raw_text: str = ""
	parsed_json: Optional[Any] = None
	transport_error: Optional[TransportFailure] = None
	body_stream: Optional[UpstreamStream] = field(default=None, compare=False)

	@property
	def is_transport_failure(self) -> bool:
		return self.transport_error is not None

