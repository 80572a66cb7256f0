from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from typing import Any, Dict, Iterator, Optional

import httpx
import openai
from openai import OpenAI

from lodge_gateway import constants
from lodge_gateway.adapters.types import (
	EndpointConfig,
	ProviderCallRequest,
	ProviderCallResult,
	UpstreamStream,
	UpstreamStreamError,
)


LOGGER = logging.getLogger(__name__)


def _build_openai_client(*, endpoint: EndpointConfig) -> OpenAI:
	return OpenAI(
		api_key=endpoint.api_key,
		base_url=endpoint.base_url,
		timeout=endpoint.timeout_s,
		max_retries=0,
	)


def _responses_kwargs(request: ProviderCallRequest) -> Dict[str, Any]:
	kwargs: Dict[str, Any] = {
		"model": request.model,
		"input": [message.as_dict() for message in request.messages],
		"stream": request.stream,
	}
	if request.instructions:
		kwargs["instructions"] = request.instructions
	if request.web_search:
		tool: Dict[str, Any] = {"type": "web_search"}
		if request.allowed_domains:
			tool["filters"] = {"allowed_domains": list(request.allowed_domains)}
		kwargs["tools"] = [tool]
	if request.include_sources:
		kwargs["include"] = [constants.WEB_SEARCH_SOURCES_INCLUDE]
	if request.max_tool_calls is not None:
		kwargs["max_tool_calls"] = request.max_tool_calls
	if request.temperature is not None:
		kwargs["temperature"] = request.temperature
	return kwargs


def _chat_completions_kwargs(request: ProviderCallRequest) -> Dict[str, Any]:
	messages = [message.as_dict() for message in request.messages]
	if request.instructions:
		messages.insert(0, {"role": "system", "content": request.instructions})
	temperature = request.temperature
	if temperature is None:
		temperature = constants.CHAT_COMPLETIONS_TEMPERATURE
	return {
		"model": request.model,
		"messages": messages,
		"temperature": temperature,
		"stream": request.stream,
	}


def _raw_create(client: OpenAI, endpoint: EndpointConfig, request: ProviderCallRequest):
	if endpoint.api_style == "chat_completions":
		return client.chat.completions.with_raw_response.create(**_chat_completions_kwargs(request))
	return client.responses.with_raw_response.create(**_responses_kwargs(request))


def _streaming_create(client: OpenAI, endpoint: EndpointConfig, request: ProviderCallRequest):
	if endpoint.api_style == "chat_completions":
		return client.chat.completions.with_streaming_response.create(**_chat_completions_kwargs(request))
	return client.responses.with_streaming_response.create(**_responses_kwargs(request))


def _parse_json(text: str) -> Optional[Any]:
	if not text:
		return None
	try:
		return json.loads(text)
	except json.JSONDecodeError:
		return None


def _http_result(endpoint: EndpointConfig, response: httpx.Response) -> ProviderCallResult:
	text = response.text
	return ProviderCallResult(
		provider_id=endpoint.provider_id,
		api_style=endpoint.api_style,
		succeeded=response.is_success,
		http_status=response.status_code,
		raw_text=text,
		parsed_json=_parse_json(text),
	)


def _transport_result(endpoint: EndpointConfig, exc: openai.APIConnectionError) -> ProviderCallResult:
	failure = "timeout" if isinstance(exc, openai.APITimeoutError) else "connection"
	LOGGER.warning("upstream %s unreachable (%s): %s", endpoint.provider_id, failure, exc)
	return ProviderCallResult(
		provider_id=endpoint.provider_id,
		api_style=endpoint.api_style,
		succeeded=False,
		http_status=0,
		raw_text=str(exc),
		transport_error=failure,
	)


def call(endpoint: EndpointConfig, request: ProviderCallRequest) -> ProviderCallResult:
	"""Issue one buffered upstream call.

	Non-2xx answers come back as a failed result with the upstream status and
	body; network failures come back with ``http_status=0`` and a
	``transport_error`` tag. Nothing here retries.
	"""
	buffered = request.with_stream(False)
	with _build_openai_client(endpoint=endpoint) as client:
		try:
			raw = _raw_create(client, endpoint, buffered)
		except openai.APIStatusError as exc:
			result = _http_result(endpoint, exc.response)
		except openai.APIConnectionError as exc:
			return _transport_result(endpoint, exc)
		else:
			result = _http_result(endpoint, raw.http_response)
	LOGGER.info(
		"upstream %s %s status=%s json=%s",
		endpoint.provider_id,
		endpoint.api_style,
		result.http_status,
		result.parsed_json is not None,
	)
	return result


def _guarded_chunks(endpoint: EndpointConfig, chunks: Iterator[bytes]) -> Iterator[bytes]:
	try:
		for chunk in chunks:
			yield chunk
	except (httpx.HTTPError, httpx.StreamError) as exc:
		LOGGER.warning("upstream %s stream broke: %s", endpoint.provider_id, exc)
		raise UpstreamStreamError(str(exc)) from exc


def open_stream(endpoint: EndpointConfig, request: ProviderCallRequest) -> ProviderCallResult:
	"""Issue one streaming upstream call.

	On 2xx the result carries an open ``UpstreamStream`` that the caller must
	close. Any other outcome is the same failed result ``call`` would return.
	"""
	streaming = request.with_stream(True)
	stack = ExitStack()
	try:
		client = stack.enter_context(_build_openai_client(endpoint=endpoint))
		response = stack.enter_context(_streaming_create(client, endpoint, streaming))
	except openai.APIStatusError as exc:
		stack.close()
		result = _http_result(endpoint, exc.response)
		LOGGER.info("upstream %s stream refused status=%s", endpoint.provider_id, result.http_status)
		return result
	except openai.APIConnectionError as exc:
		stack.close()
		return _transport_result(endpoint, exc)
	except BaseException:
		stack.close()
		raise

	LOGGER.info("upstream %s stream opened status=%s", endpoint.provider_id, response.status_code)
	return ProviderCallResult(
		provider_id=endpoint.provider_id,
		api_style=endpoint.api_style,
		succeeded=True,
		http_status=response.status_code,
		body_stream=UpstreamStream(_guarded_chunks(endpoint, response.iter_bytes()), stack.close),
	)
