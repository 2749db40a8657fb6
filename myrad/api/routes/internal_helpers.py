from __future__ import annotations

import structlog
from fastapi import HTTPException, Request

from myrad.core.config import get_settings
from myrad.db.session import Store
from myrad.services.admission import AdmissionGate
from myrad.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(request, trusted_proxies=settings.internal_api_trusted_proxies)

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_api_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning("internal_api_auth_failed", reason="invalid_credentials", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def _store(request: Request) -> Store:
    return request.app.state.store


def _admission_gate(request: Request) -> AdmissionGate:
    return request.app.state.admission_gate


def _user_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "E_USER_NOT_FOUND"})
