from __future__ import annotations

from typing import Optional


class GatewayError(Exception):
	"""Failure that leaves the gateway as an ``{ok: false, error: CODE}`` envelope."""

	def __init__(
		self,
		*,
		status_code: int,
		code: str,
		details: Optional[str] = None,
		upstream_status: Optional[int] = None,
	):
		super().__init__(details or code)
		self.status_code = status_code
		self.code = code
		self.details = details
		self.upstream_status = upstream_status


def configuration_error(code: str, details: str) -> GatewayError:
	return GatewayError(status_code=500, code=code, details=details)


def transport_error(details: str) -> GatewayError:
	return GatewayError(status_code=502, code="UPSTREAM_CALL_FAILED", details=details)
