from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request


def now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _request_id(request: Optional[Request]) -> Optional[str]:
	if request is None:
		return None
	return getattr(request.state, "request_id", None)


def error_response(
	*,
	code: str,
	request: Optional[Request] = None,
	status: Optional[int] = None,
	details: Optional[str] = None,
) -> Dict[str, Any]:
	payload: Dict[str, Any] = {
		"ok": False,
		"error": code,
	}
	if status is not None:
		payload["status"] = status
	if details:
		payload["details"] = details
	request_id = _request_id(request)
	if request_id:
		payload["request_id"] = request_id
	return payload
