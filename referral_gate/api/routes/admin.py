from fastapi import APIRouter, Depends

from referral_gate.core.auth import Identity, require_admin
from referral_gate.schemas.session import AdminSessionResponse

router = APIRouter(tags=["Admin"])


@router.get("/admin/session", response_model=AdminSessionResponse)
async def admin_session(identity: Identity = Depends(require_admin)) -> AdminSessionResponse:
    """Return the admin identity for the current session.

    Used by the admin panel to confirm access on load. Lives under ``/api``,
    so it is rate limited per client like every other API route.
    """
    return AdminSessionResponse(
        user_id=identity.user_id,
        email=identity.email,
        role=identity.role,
    )
