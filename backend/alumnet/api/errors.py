"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from alumnet.api.request_id import get_request_id
from alumnet.network.domain.exceptions import NetworkError
from alumnet.obs import logging as obs_logging

_logger = obs_logging.get_logger("alumnet.errors")


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		rid = get_request_id(request)
		payload = {"detail": exc.detail, "request_id": rid}
		return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-Id": rid})

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		rid = get_request_id(request)
		payload = {"detail": "validation_error", "errors": jsonable_encoder(exc.errors()), "request_id": rid}
		return JSONResponse(status_code=422, content=payload, headers={"X-Request-Id": rid})

	@app.exception_handler(NetworkError)
	async def network_exc_handler(request: Request, exc: NetworkError):  # type: ignore[override]
		rid = get_request_id(request)
		if exc.status_code >= 500:
			_logger.error("network_error", extra={"detail": exc.detail})
		payload = {"detail": exc.detail, "request_id": rid}
		return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-Id": rid})
