from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from lodge_gateway import constants
from lodge_gateway.errors import GatewayError
from lodge_gateway.middleware import RequestContextMiddleware
from lodge_gateway.response import error_response
from lodge_gateway.routers import ai, health
from lodge_gateway.services import provider_config


LOGGER = logging.getLogger(__name__)


def create_app() -> FastAPI:
	app = FastAPI(
		title=constants.APP_NAME,
		version=constants.APP_VERSION,
	)
	_register_middleware(app)
	_register_handlers(app)
	_register_routers(app)
	return app


def _register_middleware(app: FastAPI) -> None:
	app.add_middleware(RequestContextMiddleware)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=constants.DEFAULT_CORS_ALLOW_ORIGINS,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.add_middleware(
		TrustedHostMiddleware,
		allowed_hosts=constants.DEFAULT_TRUSTED_HOSTS,
	)


def _register_routers(app: FastAPI) -> None:
	app.include_router(health.router)
	app.include_router(ai.router)


def _register_handlers(app: FastAPI) -> None:
	@app.exception_handler(GatewayError)
	async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
		if exc.status_code >= 500:
			LOGGER.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.details or "-")
		payload = error_response(
			code=exc.code,
			request=request,
			status=exc.upstream_status,
			details=exc.details,
		)
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(HTTPException)
	async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
		payload = error_response(
			code=f"HTTP_{exc.status_code}",
			request=request,
			details=_exc_message(exc.detail),
		)
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(StarletteHTTPException)
	async def handle_starlette_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
		payload = error_response(
			code=f"HTTP_{exc.status_code}",
			request=request,
			details=_exc_message(exc.detail),
		)
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(RequestValidationError)
	async def handle_request_validation_error(
		request: Request,
		exc: RequestValidationError,
	) -> JSONResponse:
		evidence = []
		for issue in exc.errors():
			loc = ".".join(str(part) for part in issue.get("loc", []))
			msg = issue.get("msg", "Invalid request.")
			evidence.append(f"{loc}: {msg}" if loc else msg)
		payload = error_response(
			code="INVALID_BODY",
			request=request,
			details="; ".join(evidence) or None,
		)
		return JSONResponse(status_code=400, content=payload)

	@app.exception_handler(Exception)
	async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
		LOGGER.exception("unhandled error on %s %s", request.method, request.url.path)
		payload = error_response(
			code="INTERNAL_ERROR",
			request=request,
		)
		return JSONResponse(status_code=500, content=payload)


def _exc_message(detail: Any) -> str:
	if isinstance(detail, str):
		return detail
	if detail is None:
		return "Request failed."
	return str(detail)


def configure_logging() -> None:
	logging.basicConfig(
		level=provider_config.log_level(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)


def run() -> None:
	import uvicorn

	configure_logging()
	uvicorn.run(
		"lodge_gateway.main:app",
		host=os.getenv("GATEWAY_HOST", "127.0.0.1"),
		port=int(os.getenv("GATEWAY_PORT", "8788")),
	)


app = create_app()
