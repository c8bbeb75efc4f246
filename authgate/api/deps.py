from fastapi import Depends, HTTPException, Request, status

from authgate.services.session import Identity


def get_identity(request: Request) -> Identity | None:
    """Identity resolved by the gateway for this request, if any."""
    return getattr(request.state, "identity", None)


def require_identity(identity: Identity | None = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not signed in")
    return identity
