"""Security helpers for the admin endpoints."""
from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .config import AdminCredentials


class AdminAuth:
    """HTTP Basic authentication using constant-time comparisons."""

    def __init__(self, credentials: AdminCredentials):
        if not credentials.username or not credentials.password:
            raise ValueError("Admin username and password must be provided")
        self._credentials = credentials
        self._basic = HTTPBasic(auto_error=False)

    async def __call__(self, request: Request) -> str:
        provided: HTTPBasicCredentials | None = await self._basic(request)
        if provided is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Basic"},
            )

        username_ok = secrets.compare_digest(
            provided.username.encode("utf-8"), self._credentials.username.encode("utf-8")
        )
        password_ok = secrets.compare_digest(
            provided.password.encode("utf-8"), self._credentials.password.encode("utf-8")
        )
        if not (username_ok and password_ok):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return provided.username


__all__ = ["AdminAuth"]
