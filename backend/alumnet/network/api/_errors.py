"""Error translation helpers for the network API."""

from __future__ import annotations

from fastapi import HTTPException

from alumnet.network.domain.exceptions import NetworkError


def to_http_error(exc: NetworkError) -> HTTPException:
	"""Translate a domain exception to a FastAPI HTTP error."""
	return HTTPException(status_code=exc.status_code, detail=exc.detail)
