"""Pull answer text, sources and stream deltas out of provider documents.

Responses-style documents carry a heterogeneous ``output`` array. Each entry is
parsed into one of a small set of tagged items keyed on its ``type``; anything
unrecognised becomes an ``UnknownItem`` that every extractor skips.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from lodge_gateway.adapters.types import ProviderCallResult


Source = Dict[str, str]

COMPLETION_EVENT_TYPES = frozenset({"response.completed", "response.incomplete", "response.failed"})


@dataclass(frozen=True)
class OutputText:
	text: str
	annotations: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class MessageItem:
	fragments: List[OutputText]


@dataclass(frozen=True)
class WebSearchCallItem:
	sources: List[Any]


@dataclass(frozen=True)
class UnknownItem:
	type: Optional[str]


OutputItem = Union[MessageItem, WebSearchCallItem, UnknownItem]


def _as_list(value: Any) -> List[Any]:
	return value if isinstance(value, list) else []


def _parse_message(raw: Dict[str, Any]) -> MessageItem:
	fragments: List[OutputText] = []
	for part in _as_list(raw.get("content")):
		if not isinstance(part, dict) or part.get("type") != "output_text":
			continue
		text = part.get("text")
		if not isinstance(text, str):
			continue
		annotations = [ann for ann in _as_list(part.get("annotations")) if isinstance(ann, dict)]
		fragments.append(OutputText(text=text, annotations=annotations))
	return MessageItem(fragments=fragments)


def parse_output_item(raw: Any) -> OutputItem:
	if not isinstance(raw, dict):
		return UnknownItem(type=None)
	item_type = raw.get("type")
	if item_type == "message":
		return _parse_message(raw)
	if item_type == "web_search_call":
		action = raw.get("action")
		sources = _as_list(action.get("sources")) if isinstance(action, dict) else []
		return WebSearchCallItem(sources=sources)
	return UnknownItem(type=item_type if isinstance(item_type, str) else None)


def output_items(document: Any) -> List[OutputItem]:
	if not isinstance(document, dict):
		return []
	return [parse_output_item(raw) for raw in _as_list(document.get("output"))]


def _source(url: Any, title: Any) -> Optional[Source]:
	if not isinstance(url, str) or not url:
		return None
	source: Source = {"url": url}
	if isinstance(title, str):
		source["title"] = title
	return source


def _first_message(document: Any) -> Optional[MessageItem]:
	for item in output_items(document):
		if isinstance(item, MessageItem):
			return item
	return None


def extract_text(document: Any) -> str:
	message = _first_message(document)
	if message is None:
		return ""
	return "\n\n".join(fragment.text for fragment in message.fragments).strip()


def extract_sources(document: Any) -> List[Source]:
	"""Web-search sources in first-seen order. Duplicates are kept."""
	sources: List[Source] = []
	for item in output_items(document):
		if not isinstance(item, WebSearchCallItem):
			continue
		for raw in item.sources:
			if not isinstance(raw, dict):
				continue
			source = _source(raw.get("url"), raw.get("title"))
			if source is not None:
				sources.append(source)
	return sources


def extract_citations(document: Any) -> List[Source]:
	message = _first_message(document)
	if message is None:
		return []
	citations: List[Source] = []
	for fragment in message.fragments:
		for annotation in fragment.annotations:
			if annotation.get("type") != "url_citation":
				continue
			citation = _source(annotation.get("url"), annotation.get("title"))
			if citation is not None:
				citations.append(citation)
	return citations


def unique_by_url(items: Iterable[Source]) -> List[Source]:
	seen: set[str] = set()
	unique: List[Source] = []
	for item in items:
		url = item.get("url")
		if not url or url in seen:
			continue
		seen.add(url)
		unique.append(item)
	return unique


def extract_chat_completion_text(document: Any) -> str:
	if not isinstance(document, dict):
		return ""
	choices = _as_list(document.get("choices"))
	if not choices or not isinstance(choices[0], dict):
		return ""
	message = choices[0].get("message")
	if not isinstance(message, dict):
		return ""
	content = message.get("content")
	return content if isinstance(content, str) else ""


def extract_result_text(result: ProviderCallResult) -> str:
	if result.api_style == "chat_completions":
		return extract_chat_completion_text(result.parsed_json)
	return extract_text(result.parsed_json)


def _event_type(event: Any) -> str:
	if not isinstance(event, dict):
		return ""
	value = event.get("type")
	return value if isinstance(value, str) else ""


def extract_delta(event: Any) -> Optional[str]:
	event_type = _event_type(event)
	if not event_type:
		return None
	delta = event.get("delta")
	if "output_text" in event_type and "delta" in event_type:
		return delta if isinstance(delta, str) else None
	if event_type.endswith(".delta") and isinstance(delta, str):
		return delta
	return None


def is_completion_event(event: Any) -> bool:
	return _event_type(event) in COMPLETION_EVENT_TYPES


def extract_event_sources(event: Any) -> Optional[List[Source]]:
	"""Sources carried by one stream event, or ``None`` when it carries none."""
	if not isinstance(event, dict):
		return None
	if isinstance(event.get("sources"), list):
		sources = [_source(raw.get("url"), raw.get("title")) for raw in event["sources"] if isinstance(raw, dict)]
		return [source for source in sources if source is not None] or None
	item = event.get("item")
	if isinstance(item, dict) and item.get("type") == "web_search_call":
		sources = extract_sources({"output": [item]})
		return sources or None
	if is_completion_event(event):
		sources = extract_sources(event.get("response"))
		return sources or None
	return None
