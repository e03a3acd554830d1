from __future__ import annotations

from pydantic import BaseModel, Field


class AdminSessionResponse(BaseModel):
    """Identity of the admin behind the current session."""

    user_id: str = Field(..., description="Provider user id")
    email: str | None = Field(None, description="Email reported by the provider")
    role: str | None = Field(None, description="Role reported by the provider")
    is_admin: bool = Field(True, description="Always true; non-admins receive 403")
