from __future__ import annotations

import os
from typing import Optional

from lodge_gateway import constants
from lodge_gateway.adapters.types import EndpointConfig
from lodge_gateway.errors import configuration_error, GatewayError


def _str_env(name: str, default: str) -> str:
	return os.getenv(name, default).strip() or default


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def upstream_timeout() -> float:
	raw = os.getenv("GATEWAY_UPSTREAM_TIMEOUT_S", "").strip()
	if not raw:
		return constants.DEFAULT_UPSTREAM_TIMEOUT_S
	try:
		value = float(raw)
	except ValueError as exc:
		raise configuration_error("CONFIG_INVALID", "GATEWAY_UPSTREAM_TIMEOUT_S must be numeric.") from exc
	if value <= 0:
		raise configuration_error("CONFIG_INVALID", "GATEWAY_UPSTREAM_TIMEOUT_S must be greater than zero.")
	return value


def research_max_tool_calls() -> int:
	return _int_env("GATEWAY_RESEARCH_MAX_TOOL_CALLS", constants.DEFAULT_RESEARCH_MAX_TOOL_CALLS)


def log_level() -> str:
	return _str_env("GATEWAY_LOG_LEVEL", "INFO").upper()


def openai_endpoint() -> Optional[EndpointConfig]:
	key = os.getenv("OPENAI_API_KEY", "").strip()
	if not key:
		return None
	return EndpointConfig(
		provider_id=constants.PROVIDER_OPENAI,
		api_style="responses",
		base_url=_str_env("GATEWAY_OPENAI_BASE_URL", constants.DEFAULT_OPENAI_BASE_URL),
		api_key=key,
		model=_str_env("GATEWAY_OPENAI_MODEL", constants.DEFAULT_OPENAI_MODEL),
		timeout_s=upstream_timeout(),
	)


def xai_endpoint() -> Optional[EndpointConfig]:
	key = os.getenv("XAI_API_KEY", "").strip()
	if not key:
		return None
	return EndpointConfig(
		provider_id=constants.PROVIDER_XAI,
		api_style="chat_completions",
		base_url=_str_env("GATEWAY_XAI_BASE_URL", constants.DEFAULT_XAI_BASE_URL),
		api_key=key,
		model=_str_env("GATEWAY_XAI_MODEL", constants.DEFAULT_XAI_MODEL),
		timeout_s=upstream_timeout(),
	)


def endpoint_for(provider_id: str) -> Optional[EndpointConfig]:
	if provider_id == constants.PROVIDER_OPENAI:
		return openai_endpoint()
	if provider_id == constants.PROVIDER_XAI:
		return xai_endpoint()
	return None


def require_endpoint(provider_id: str) -> EndpointConfig:
	endpoint = endpoint_for(provider_id)
	if endpoint is not None:
		return endpoint
	if provider_id == constants.PROVIDER_XAI:
		raise configuration_error("XAI_NOT_CONFIGURED", "Missing XAI_API_KEY.")
	if provider_id == constants.PROVIDER_OPENAI:
		raise configuration_error("OPENAI_NOT_CONFIGURED", "Missing OPENAI_API_KEY.")
	raise GatewayError(status_code=500, code="CONFIG_INVALID", details=f"Unknown provider '{provider_id}'.")
