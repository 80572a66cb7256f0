from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from lodge_gateway import constants
from lodge_gateway.adapters import openai_client
from lodge_gateway.adapters.types import ChatMessage, ProviderCallRequest, ProviderCallResult
from lodge_gateway.errors import GatewayError, transport_error
from lodge_gateway.schemas import ListingSnapshot, MovePlan, Suggestion
from lodge_gateway.services import prompts, provider_config
from lodge_gateway.services.extraction import (
	extract_citations,
	extract_result_text,
	extract_sources,
	extract_text,
	unique_by_url,
)
from lodge_gateway.services.routing import RouteFlags, fallback_provider, is_fallback_status, route
from lodge_gateway.services.structured import CallFn, StructuredTask, model_validator, run_structured_call


LOGGER = logging.getLogger(__name__)


def _plan_context(context: Any, listing: Optional[ListingSnapshot]) -> Any:
	if listing is None:
		return context
	return {"answers": context, "listing": listing.model_dump(exclude_none=True)}


def generate_plan(
	*,
	context: Any,
	listing: Optional[ListingSnapshot] = None,
	call: CallFn = openai_client.call,
) -> Dict[str, Any]:
	task = StructuredTask(
		category="plan",
		system_prompt=prompts.PLAN_SYSTEM,
		user_prompt=prompts.plan_user(_plan_context(context, listing)),
		corrective_nudge=constants.CORRECTIVE_NUDGE,
		validate=model_validator(MovePlan),
	)
	outcome = run_structured_call(task, call=call)
	if outcome.value is None:
		raise GatewayError(
			status_code=502,
			code="PLAN_UNAVAILABLE",
			upstream_status=outcome.first_status,
		)
	return outcome.value


def _same_choice(candidate: Any, offered: Any) -> bool:
	if isinstance(candidate, bool) or isinstance(offered, bool):
		return isinstance(candidate, bool) and isinstance(offered, bool) and candidate == offered
	if isinstance(candidate, str) or isinstance(offered, str):
		return isinstance(candidate, str) and isinstance(offered, str) and candidate == offered
	return candidate == offered


def suggest_choice(
	*,
	question_id: str,
	choices: List[Dict[str, Any]],
	context: Any,
	call: CallFn = openai_client.call,
) -> Dict[str, Any]:
	"""Pick one of ``choices``; falls back to the first choice, flagged by its reason."""
	offered = [choice["value"] for choice in choices]

	def is_offered(suggestion: Suggestion) -> bool:
		return any(_same_choice(suggestion.value, value) for value in offered)

	task = StructuredTask(
		category="suggest",
		system_prompt=prompts.SUGGEST_SYSTEM,
		user_prompt=prompts.suggest_user(question_id, choices, context),
		corrective_nudge=constants.SUGGEST_CORRECTIVE_NUDGE,
		validate=model_validator(Suggestion, check=is_offered),
	)
	outcome = run_structured_call(task, call=call)
	if outcome.value is not None:
		return outcome.value
	LOGGER.warning("suggest %s: substituting safe default", question_id)
	return {"ok": True, "value": offered[0], "reason": constants.SAFE_DEFAULT_REASON}


def _explain_request(
	provider_id: str,
	model: str,
	*,
	topic: str,
	context: Any,
	web_search: bool,
) -> ProviderCallRequest:
	return ProviderCallRequest(
		provider_id=provider_id,
		model=model,
		messages=(
			ChatMessage(role="system", content=prompts.EXPLAIN_SYSTEM),
			ChatMessage(role="user", content=prompts.explain_user(topic, context)),
		),
		web_search=web_search,
		include_sources=web_search,
	)


def explain_topic(
	*,
	topic: str,
	context: Any,
	second_opinion: bool = False,
	call: CallFn = openai_client.call,
) -> Dict[str, Any]:
	need_web = prompts.needs_fresh_information(topic)
	provider_id = route("explain", RouteFlags(need_web_search=need_web, prefer_secondary=second_opinion))
	endpoint = provider_config.require_endpoint(provider_id)
	web_search = need_web and endpoint.api_style == "responses"
	result = call(endpoint, _explain_request(provider_id, endpoint.model, topic=topic, context=context, web_search=web_search))
	if result.succeeded:
		return {"ok": True, "text": extract_result_text(result)}

	secondary_id = fallback_provider(provider_id)
	if secondary_id and is_fallback_status(result.http_status):
		secondary = provider_config.endpoint_for(secondary_id)
		if secondary is not None:
			LOGGER.warning("explain: %s answered %s, asking %s", provider_id, result.http_status, secondary_id)
			fallback = call(
				secondary,
				_explain_request(secondary_id, secondary.model, topic=topic, context=context, web_search=False),
			)
			fallback_text = extract_result_text(fallback) if fallback.succeeded else ""
			if fallback_text:
				return {"ok": True, "text": fallback_text}

	if result.is_transport_failure:
		raise transport_error(result.raw_text)
	raise GatewayError(status_code=502, code="UPSTREAM_ERROR", upstream_status=result.http_status)


def research_query(
	*,
	query: str,
	serious_mode: bool = False,
	humor_dial: Optional[str] = None,
	allowed_domains: Optional[List[str]] = None,
	call: CallFn = openai_client.call,
) -> Dict[str, Any]:
	endpoint = provider_config.require_endpoint(constants.PRIMARY_PROVIDER)
	request = ProviderCallRequest(
		provider_id=endpoint.provider_id,
		model=endpoint.model,
		messages=(ChatMessage(role="user", content=query),),
		instructions=prompts.research_instructions(serious_mode=serious_mode, humor_dial=humor_dial),
		web_search=True,
		allowed_domains=tuple(allowed_domains or ()),
		include_sources=True,
		max_tool_calls=provider_config.research_max_tool_calls(),
	)
	result: ProviderCallResult = call(endpoint, request)
	if result.is_transport_failure:
		raise transport_error(result.raw_text)
	if not result.succeeded:
		raise GatewayError(
			status_code=502,
			code="UPSTREAM_ERROR",
			details=result.raw_text[:2000] or None,
			upstream_status=result.http_status,
		)
	document = result.parsed_json if result.parsed_json is not None else {"nonJsonBody": result.raw_text}
	return {
		"ok": True,
		"text": extract_text(document),
		"citations": unique_by_url(extract_citations(document)),
		"sources": unique_by_url(extract_sources(document)),
		"raw": document,
	}
