from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import get_session
from .init_db import init_db
from .security import (
    AUTH_COOKIE,
    check_password,
    hash_password,
    password_enabled,
    require_auth,
)
from .services.ip_info_service import build_ip_info
from .services.ip_intel_service import IPIntelResolver
from .services.session_service import list_scan_sessions
from .services.stats_service import build_statistics

log = logging.getLogger(__name__)

app = FastAPI(title="reconboard API")


def _cors_origins() -> list[str]:
    raw = os.getenv("RECON_CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:7171",
        "http://localhost:7171",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LoginRequest(BaseModel):
    password: str


@app.on_event("startup")
def _startup() -> None:
    init_db()


def get_resolver() -> IPIntelResolver:
    return IPIntelResolver()


def _store_error(message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": "internal", "message": message})


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@app.post("/login")
def login(payload: LoginRequest, request: Request) -> JSONResponse:
    if not password_enabled():
        raise HTTPException(status_code=404, detail="Login is not enabled")
    if not check_password(payload.password):
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Invalid password"},
        )
    resp = JSONResponse({"ok": True})
    resp.set_cookie(
        AUTH_COOKIE,
        hash_password(payload.password),
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="strict",
    )
    return resp


api = APIRouter(prefix="/api", dependencies=[Depends(require_auth)])


@api.get("/statistics")
def statistics(session: Session = Depends(get_session)) -> dict[str, Any]:
    try:
        return build_statistics(session)
    except SQLAlchemyError:
        log.exception("failed calculating statistics")
        raise _store_error("Error retrieving statistics")


@api.get("/ip/{ip}")
def ip_info(
    ip: str,
    session: Session = Depends(get_session),
    resolver: IPIntelResolver = Depends(get_resolver),
) -> dict[str, Any]:
    ip = ip.strip()
    if not ip:
        raise HTTPException(status_code=400, detail="IP address parameter is required")
    try:
        return build_ip_info(session, ip, resolver)
    except SQLAlchemyError:
        log.exception("failed building IP information for %s", ip)
        raise _store_error("Error retrieving IP information")


@api.get("/scan-sessions")
def scan_sessions(session: Session = Depends(get_session)) -> list[dict[str, Any]]:
    try:
        return list_scan_sessions(session)
    except SQLAlchemyError:
        log.exception("failed to get scan sessions")
        raise _store_error("Error retrieving scan sessions")


@api.get("/security/status")
def security_status() -> dict[str, Any]:
    return {
        "password_enabled": password_enabled(),
        "server_info": "reconboard web api",
    }


app.include_router(api)
