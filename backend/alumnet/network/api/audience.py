"""Read-only audience endpoints for the caller."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from alumnet.infra.auth import AuthenticatedUser, get_current_user
from alumnet.network.api._errors import to_http_error
from alumnet.network.domain.audience import AudienceService
from alumnet.network.domain.exceptions import NetworkError
from alumnet.network.schemas import dto

router = APIRouter(tags=["network:audience"])
_service = AudienceService()


@router.get("/me/audience", response_model=dto.AudienceResponse)
async def my_audience_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.AudienceResponse:
	try:
		return await _service.get_audience(auth_user)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/me/can-write", response_model=dto.CanWriteResponse)
async def can_write_endpoint(
	kind: str = Query(...),
	target_id: UUID = Query(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.CanWriteResponse:
	try:
		return await _service.check_can_write(auth_user, kind, target_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc
