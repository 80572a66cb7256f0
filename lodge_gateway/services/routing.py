from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from lodge_gateway import constants


@dataclass(frozen=True)
class RouteFlags:
	need_web_search: bool = False
	prefer_secondary: bool = False
	prior_failure: bool = False


def _prefers_secondary(flags: Union[RouteFlags, Mapping[str, Any], None]) -> bool:
	if flags is None:
		return False
	if isinstance(flags, RouteFlags):
		return flags.prefer_secondary
	return bool(flags.get("prefer_secondary") or flags.get("preferSecondary"))


def route(task_category: str, flags: Union[RouteFlags, Mapping[str, Any], None] = None) -> str:
	"""Pick the provider for a task.

	Two rows, in priority order: an explicit second-opinion request
	goes to the secondary provider, everything else to the primary. Web-search
	need and prior failures are carried in the flags but do not change the
	choice; fallback after failure is the orchestrator's decision.
	"""
	if _prefers_secondary(flags):
		return constants.SECONDARY_PROVIDER
	return constants.PRIMARY_PROVIDER


def fallback_provider(provider_id: str) -> Optional[str]:
	if provider_id == constants.PRIMARY_PROVIDER:
		return constants.SECONDARY_PROVIDER
	return None


def is_fallback_status(status: int) -> bool:
	return status == 429 or 500 <= status <= 599
