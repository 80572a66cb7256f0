"""Bounded retry/fallback driver for calls that must yield a schema-valid JSON object.

Sequence per call, strictly in order and never in parallel:

1. routed provider, base prompt
2. same provider, prompt plus corrective nudge
3. only when attempt 1 was rate-limited (429) or a server error (5xx), the
   routed provider is the primary, and a secondary is configured: the
   secondary provider with the corrective prompt

The first attempt that succeeds at the HTTP level *and* validates is accepted;
every other attempt is discarded. Parse failures, schema mismatches and
transport failures are all simply "invalid".
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from lodge_gateway.adapters import openai_client
from lodge_gateway.adapters.types import ChatMessage, EndpointConfig, ProviderCallRequest, ProviderCallResult
from lodge_gateway.services import provider_config
from lodge_gateway.services.extraction import extract_result_text
from lodge_gateway.services.routing import RouteFlags, fallback_provider, is_fallback_status, route


LOGGER = logging.getLogger(__name__)

CallFn = Callable[[EndpointConfig, ProviderCallRequest], ProviderCallResult]
Validator = Callable[[Any], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class StructuredTask:
	category: str
	system_prompt: str
	user_prompt: str
	corrective_nudge: str
	validate: Validator
	route_flags: RouteFlags = field(default_factory=RouteFlags)


@dataclass(frozen=True)
class StructuredOutcome:
	value: Optional[Dict[str, Any]]
	provider_id: Optional[str]
	attempts: int
	first_status: int
	fallback_used: bool = False

	@property
	def valid(self) -> bool:
		return self.value is not None


def extract_json_object(raw: str) -> Optional[Dict[str, Any]]:
	candidate = raw.strip()
	if candidate.startswith("```"):
		candidate = re.sub(r"^```[a-zA-Z]*\s*", "", candidate)
		candidate = re.sub(r"\s*```$", "", candidate)
	start = candidate.find("{")
	end = candidate.rfind("}")
	if start == -1 or end == -1 or end <= start:
		return None
	try:
		parsed = json.loads(candidate[start : end + 1])
	except json.JSONDecodeError:
		return None
	return parsed if isinstance(parsed, dict) else None


def model_validator(model: Type[BaseModel], check: Optional[Callable[[Any], bool]] = None) -> Validator:
	def validate(payload: Any) -> Optional[Dict[str, Any]]:
		if not isinstance(payload, dict):
			return None
		try:
			parsed = model.model_validate(payload)
		except ValidationError as exc:
			LOGGER.debug("%s rejected: %d error(s)", model.__name__, exc.error_count())
			return None
		if check is not None and not check(parsed):
			return None
		return parsed.model_dump(by_alias=True)

	return validate


def _request(endpoint: EndpointConfig, task: StructuredTask, nudge: Optional[str]) -> ProviderCallRequest:
	request = ProviderCallRequest(
		provider_id=endpoint.provider_id,
		model=endpoint.model,
		messages=(
			ChatMessage(role="system", content=task.system_prompt),
			ChatMessage(role="user", content=task.user_prompt),
		),
	)
	return request.with_nudge(nudge) if nudge else request


def run_structured_call(task: StructuredTask, *, call: CallFn = openai_client.call) -> StructuredOutcome:
	provider_id = route(task.category, task.route_flags)
	endpoint = provider_config.require_endpoint(provider_id)
	attempts = 0

	def attempt(target: EndpointConfig, nudge: Optional[str]) -> Tuple[ProviderCallResult, Optional[Dict[str, Any]]]:
		nonlocal attempts
		attempts += 1
		result = call(target, _request(target, task, nudge))
		value = None
		if result.succeeded:
			value = task.validate(extract_json_object(extract_result_text(result)))
		LOGGER.info(
			"%s attempt=%d provider=%s status=%s valid=%s",
			task.category,
			attempts,
			target.provider_id,
			result.http_status,
			value is not None,
		)
		return result, value

	first, value = attempt(endpoint, None)
	if value is not None:
		return StructuredOutcome(value, provider_id, attempts, first.http_status)

	_, value = attempt(endpoint, task.corrective_nudge)
	if value is not None:
		return StructuredOutcome(value, provider_id, attempts, first.http_status)

	secondary_id = fallback_provider(provider_id)
	if secondary_id and is_fallback_status(first.http_status):
		secondary = provider_config.endpoint_for(secondary_id)
		if secondary is not None:
			_, value = attempt(secondary, task.corrective_nudge)
			if value is not None:
				return StructuredOutcome(value, secondary_id, attempts, first.http_status, fallback_used=True)

	LOGGER.warning("%s exhausted after %d attempt(s); first status=%s", task.category, attempts, first.http_status)
	return StructuredOutcome(None, None, attempts, first.http_status)
