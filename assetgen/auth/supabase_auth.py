"""Supabase JWT validation dependencies for FastAPI."""

import asyncio

from fastapi import Depends, Header, HTTPException
from supabase import create_client
from assetgen.config import settings


async def verify_jwt(authorization: str = Header(None)):
    """Validate Supabase JWT from Authorization header.

    Returns the authenticated user object.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization.replace("Bearer ", "")
    loop = asyncio.get_running_loop()
    try:
        client = create_client(settings.supabase_url, settings.supabase_anon_key)
        # get_user blocks on network I/O
        user_response = await loop.run_in_executor(None, client.auth.get_user, token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if user_response is None or user_response.user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_response.user


async def get_requester_id(user=Depends(verify_jwt)) -> str:
    """The authenticated user's id, used as the requester of a generation."""
    return str(user.id)
