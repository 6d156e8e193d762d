"""Pydantic schemas for session endpoints."""

from pydantic import BaseModel, Field


class SessionResponse(BaseModel):
    """The authenticated session behind a bearer token."""

    user_id: str = Field(..., description="Token subject.")
    email: str | None = Field(None, description="Email claim, when present.")
    expires_at: int = Field(..., description="UNIX timestamp the token expires at.")


class SignoutResponse(BaseModel):
    signed_out: bool = True
    sessions_revoked: int = Field(
        1,
        description="Number of sessions revoked (more than one with all_sessions=true).",
    )
