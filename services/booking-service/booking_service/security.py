from jose import jwt, JWTError
from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shared.config import Settings, get_settings

from .schemas import Actor

bearer_scheme = HTTPBearer(auto_error=False)

# most privileged first
_ROLE_PRIORITY = ("admin", "partner", "customer")


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
):
    if not settings.jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT_SECRET is not configured",
        )

    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])

        request.state.user_sub = payload.get("sub")
        request.state.user_roles = payload.get("roles")

        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def actor_from_payload(payload: dict, among=None) -> Actor:
    """Partner tokens carry the partner ID as ``sub``; customer tokens the customer ID."""
    roles = {r.lower() for r in payload.get("roles") or []}
    if among is not None:
        roles &= set(among)
    role = next((r for r in _ROLE_PRIORITY if r in roles), "customer")
    sub = payload.get("sub")
    return Actor(role=role, id=str(sub) if sub is not None else None, name=payload.get("name"))
