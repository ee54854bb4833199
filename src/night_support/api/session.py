"""Session control endpoints for the presentation layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status

from night_support.domain.errors import (
    DeviceUnavailable,
    MonitoringError,
    PermissionDenied,
)

if TYPE_CHECKING:
    from night_support.containers import AppContainer
    from night_support.services.monitoring import MonitoringSession

router = APIRouter(prefix="/session", tags=["session"])

_ERROR_STATUSES: dict[type[MonitoringError], int] = {
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    DeviceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _session(request: Request) -> MonitoringSession:
    container: AppContainer = request.app.state.container
    return container.session


def _to_http_error(exc: MonitoringError) -> HTTPException:
    status_code = _ERROR_STATUSES.get(
        type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return HTTPException(
        status_code=status_code,
        detail={"error": exc.kind, "message": str(exc)},
    )


@router.get("")
async def session_state(request: Request) -> dict[str, object]:
    """Return the observable session fields."""
    return _session(request).snapshot().to_dict()


@router.post("/activate")
async def activate(request: Request) -> dict[str, object]:
    """Start monitoring."""
    session = _session(request)
    try:
        await session.activate()
    except MonitoringError as exc:
        raise _to_http_error(exc) from exc
    return session.snapshot().to_dict()


@router.post("/deactivate")
async def deactivate(request: Request) -> dict[str, object]:
    """Stop monitoring."""
    session = _session(request)
    await session.deactivate()
    return session.snapshot().to_dict()


@router.post("/mic/enable")
async def enable_mic(request: Request) -> dict[str, object]:
    """Enable periodic audio capture."""
    session = _session(request)
    try:
        await session.enable_mic()
    except MonitoringError as exc:
        raise _to_http_error(exc) from exc
    return session.snapshot().to_dict()


@router.post("/mic/disable")
async def disable_mic(request: Request) -> dict[str, object]:
    """Disable periodic audio capture."""
    session = _session(request)
    await session.disable_mic()
    return session.snapshot().to_dict()
