# bakersdozen/api/routes.py
"""
HTTP surface over the data-access layer and auth service.

Services live on `app.state` (built in main.py's lifespan) so tests can
swap them for fakes. Error mapping:
  - unknown table/view -> 404
  - OfflineError       -> 503
  - BackendError       -> 502
Reads never fail on backend trouble; they serve the offline cache.
Table calls run under the server's anon key; `/auth/me` resolves the
caller's own bearer token.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from bakersdozen.models import unknown_fields, validate_insert
from bakersdozen.services.auth_service import AuthService
from bakersdozen.services.database import Database
from bakersdozen.services.errors import BackendError, OfflineError, UnknownTableError

logger = logging.getLogger(__name__)
router = APIRouter()


# -------------------------
# Helpers
# -------------------------
def _db(request: Request) -> Database:
    return request.app.state.database


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(UnknownTableError)
    async def _unknown(request: Request, exc: UnknownTableError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=404)

    @app.exception_handler(OfflineError)
    async def _offline(request: Request, exc: OfflineError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=503)

    @app.exception_handler(BackendError)
    async def _backend(request: Request, exc: BackendError):
        logger.warning("Backend error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            {"ok": False, "error": str(exc), "code": exc.code}, status_code=502
        )


# -------------------------
# Tables
# -------------------------
@router.get("/tables/{table}")
async def list_rows(table: str, request: Request) -> List[Dict[str, Any]]:
    return await _db(request).get_all(table)


@router.get("/tables/{table}/{record_id}")
async def get_row(table: str, record_id: str, request: Request) -> Dict[str, Any]:
    row = await _db(request).get_by_id(table, record_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No {table} record {record_id}")
    return row


@router.post("/tables/{table}", status_code=201)
async def insert_row(table: str, payload: Dict[str, Any], request: Request) -> Dict[str, Any]:
    db = _db(request)
    db.check_table(table)
    try:
        record = validate_insert(table, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False))
    return await db.insert(table, record)


@router.patch("/tables/{table}/{record_id}")
async def update_row(
    table: str, record_id: str, payload: Dict[str, Any], request: Request
) -> Dict[str, Any]:
    db = _db(request)
    db.check_table(table)
    bad = unknown_fields(table, payload)
    if bad:
        raise HTTPException(status_code=422, detail=f"Unknown fields for {table}: {bad}")
    row = await db.update(table, {**payload, "id": record_id})
    if row is None:
        raise HTTPException(status_code=404, detail=f"No {table} record {record_id}")
    return row


@router.delete("/tables/{table}/{record_id}")
async def delete_row(table: str, record_id: str, request: Request) -> Dict[str, Any]:
    deleted = await _db(request).delete(table, record_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No {table} record {record_id}")
    return {"ok": True, "deleted": record_id}


# -------------------------
# Views
# -------------------------
@router.get("/views/{view}")
async def list_view(view: str, request: Request) -> List[Dict[str, Any]]:
    return await _db(request).get_view(view)


# -------------------------
# Auth
# -------------------------
def _bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@router.get("/auth/me")
async def me(request: Request) -> Dict[str, Any]:
    """
    Identity of the caller's own access token. Signing in happens client-side
    against Supabase auth; the server never holds a user session, so one
    caller's sign-in cannot leak to another.
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    res = await _auth(request).get_user(jwt=token)
    if res.user is None:
        raise HTTPException(status_code=401, detail=res.error or "Invalid token")
    return {"ok": True, "user": res.user.model_dump(), "is_admin": res.user.is_admin}
