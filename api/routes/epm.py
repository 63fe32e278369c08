"""
api/routes/epm.py -- Employee Productivity Management: agent keys and ingestion.

Routes:
  GET    /api/epm/api-keys                    -- admin; active keys, never the raw key
  POST   /api/epm/api-keys                    -- admin; raw key returned once
  DELETE /api/epm/api-keys/{id}               -- admin; revoke
  GET    /api/epm/process-details             -- admin; EPM module licensed
  POST   /api/external/epm/process-details    -- X-API-Key; desktop agent ingestion

Agent authentication:
  Agents send the raw key in X-API-Key. It is looked up by HMAC hash (see
  auth/tokens.py), must be active and unexpired, and its last_used_at is
  stamped on every accepted request.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    IngestResponse,
    MessageResponse,
    ProcessDetailsResponse,
)
from api.request_context import api_error, record_audit
from auth.dependencies import require_admin
from auth.models import User
from auth.tokens import generate_api_key, hash_api_key
from epm.models import EpmApiKey, ProcessDetailsIn
from epm.store import EpmStore
from licensing.dependencies import require_module
from licensing.models import LicenseModule

logger = logging.getLogger("pcvisor.api.epm")

# Auth policy:
# - /epm/api-keys*: requires admin
# - GET /epm/process-details: requires admin and the EPM license module
# - POST /external/epm/process-details: X-API-Key only (no session)
router = APIRouter()

PROCESS_DETAILS_LIMIT = 100


def _store(request: Request) -> EpmStore:
    return request.app.state.epm_store


def require_api_key(request: Request, x_api_key: Optional[str] = Header(None)) -> EpmApiKey:
    """Authenticate an external agent by its X-API-Key header."""
    if not x_api_key:
        raise api_error(401, "API key required. Include x-api-key header.")
    store = _store(request)
    key = store.get_active_api_key_by_hash(hash_api_key(x_api_key))
    if key is None:
        raise api_error(401, "Invalid API key")
    if key.is_expired():
        raise api_error(401, "API key has expired", code="api_key_expired")
    store.touch_api_key(key.id)
    return key


# ---------------------------------------------------------------------------
# API key management
# ---------------------------------------------------------------------------


@router.get("/epm/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(request: Request, current_user: User = Depends(require_admin)) -> list[ApiKeyResponse]:
    return [ApiKeyResponse.model_validate(k) for k in _store(request).list_active_api_keys()]


@router.post("/epm/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: User = Depends(require_admin),
) -> ApiKeyCreatedResponse:
    raw_key = generate_api_key()
    expires_at = None
    if body.expires_at is not None:
        expiry = body.expires_at
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        expires_at = expiry.astimezone(timezone.utc).isoformat()

    key = _store(request).create_api_key(
        EpmApiKey(
            name=body.name,
            key_hash=hash_api_key(raw_key),
            last_four=raw_key[-4:],
            created_by_user_id=current_user.id,
            expires_at=expires_at,
        )
    )
    record_audit(
        request,
        current_user,
        "create_api_key",
        "security",
        resource_type="epm_api_key",
        resource_id=key.id,
        resource_name=key.name,
        details=f"Created EPM API key {key.name} (ending {key.last_four})",
    )
    return ApiKeyCreatedResponse(
        id=key.id,
        name=key.name,
        key=raw_key,
        last_four=key.last_four,
        created_at=key.created_at,
        expires_at=key.expires_at,
    )


@router.delete("/epm/api-keys/{key_id}", response_model=MessageResponse)
def revoke_api_key(request: Request, key_id: int, current_user: User = Depends(require_admin)) -> MessageResponse:
    store = _store(request)
    key = store.get_api_key(key_id)
    if key is None or not store.revoke_api_key(key_id):
        raise api_error(404, "API key not found")
    record_audit(
        request,
        current_user,
        "revoke_api_key",
        "security",
        resource_type="epm_api_key",
        resource_id=key_id,
        resource_name=key.name,
        details=f"Revoked EPM API key {key.name}",
    )
    return MessageResponse(message="API key revoked successfully")


# ---------------------------------------------------------------------------
# Process details
# ---------------------------------------------------------------------------


@router.get("/epm/process-details", response_model=list[ProcessDetailsResponse])
def list_process_details(
    request: Request,
    limit: int = Query(PROCESS_DETAILS_LIMIT, ge=1, le=1000),
    admin_user: User = Depends(require_admin),
    current_user: User = Depends(require_module(LicenseModule.EPM)),
) -> list[ProcessDetailsResponse]:
    return [ProcessDetailsResponse.model_validate(d) for d in _store(request).list_process_details(limit)]


@router.post("/external/epm/process-details", response_model=IngestResponse, status_code=201)
def ingest_process_details(
    request: Request,
    body: ProcessDetailsIn,
    api_key: EpmApiKey = Depends(require_api_key),
) -> IngestResponse:
    _store(request).upsert_process_details(body.to_process_details())
    logger.debug("Ingested process details %s via key %s", body.taskguid, api_key.id)
    return IngestResponse(task_guid=body.taskguid)
