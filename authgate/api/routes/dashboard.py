from fastapi import APIRouter, Depends

from authgate.api.deps import require_identity
from authgate.schemas.auth import SessionEnvelope, UserPublic
from authgate.services.session import Identity

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=SessionEnvelope)
async def dashboard(identity: Identity = Depends(require_identity)) -> SessionEnvelope:
    return SessionEnvelope(
        data=UserPublic(
            id=identity.user_id,
            email=identity.email,
            name=identity.name,
            emailVerified=identity.email_verified,
        )
    )
