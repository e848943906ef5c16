"""Auth router for username login and signup.

Endpoints:
    POST /login   - Issue a session token for a username
    POST /signup  - Register a username/password pair and issue a token

Both endpoints return the token the chat WebSocket expects in its ``token``
query parameter.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .service import DuplicateUserError, get_token_service, get_user_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    """Request body for /login."""
    username: Optional[str] = None


class SignupRequest(BaseModel):
    """Request body for /signup."""
    username: Optional[str] = None
    password: Optional[str] = None


@router.post("/login")
async def login(request: LoginRequest) -> dict:
    """Issue a token for the given username.

    Returns:
        dict with the signed ``token``.
    """
    if not request.username:
        raise HTTPException(status_code=400, detail="Username required")

    token = get_token_service().issue(request.username)
    logger.info("[Auth] Issued token for %s", request.username)
    return {"token": token}


@router.post("/signup", status_code=201)
async def signup(request: SignupRequest) -> JSONResponse:
    """Register a new user and log them in.

    Returns:
        201 with ``message`` and ``token``; 400 when a field is missing;
        409 when the username is taken.
    """
    if not request.username or not request.password:
        raise HTTPException(status_code=400, detail="Username and password required")

    try:
        get_user_store().register(request.username, request.password)
    except DuplicateUserError:
        logger.info("[Auth] Signup rejected, username taken: %s", request.username)
        raise HTTPException(status_code=409, detail="Username already exists")

    token = get_token_service().issue(request.username)
    return JSONResponse(
        {"message": "Signup successful", "token": token},
        status_code=201,
    )
