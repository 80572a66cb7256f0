from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, Optional, Protocol


class KeyValueStore(Protocol):
	def get(self, key: str) -> Optional[Any]: ...

	def set(self, key: str, value: Any) -> None: ...


class InMemoryStore:
	"""Dict-backed stand-in for browser local storage."""

	def __init__(self, initial: Optional[Dict[str, Any]] = None):
		self._values: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

	def get(self, key: str) -> Optional[Any]:
		value = self._values.get(key)
		return copy.deepcopy(value)

	def set(self, key: str, value: Any) -> None:
		self._values[key] = copy.deepcopy(value)


def context_from_store(store: KeyValueStore, keys: Iterable[str]) -> Dict[str, Any]:
	"""Snapshot the named keys into the opaque ``context`` object structured calls send."""
	context: Dict[str, Any] = {}
	for key in keys:
		value = store.get(key)
		if value is not None:
			context[key] = value
	return context
