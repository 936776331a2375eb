from fastapi import Depends, HTTPException, status

from .schemas import Actor
from .security import actor_from_payload, get_current_user


def require_role(payload: dict, allowed_roles: list[str]) -> Actor:
    token_roles = payload.get("roles")

    if not isinstance(token_roles, list) or not token_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Roles missing in token",
        )

    allowed = {r.lower() for r in allowed_roles}
    roles = {r.lower() for r in token_roles}

    if roles.isdisjoint(allowed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )

    # act under the most privileged role this route accepts
    return actor_from_payload(payload, among=allowed)


def role_required(*allowed_roles: str):
    """Dependency yielding the calling Actor once its token passes the role check."""

    def dependency(payload: dict = Depends(get_current_user)) -> Actor:
        return require_role(payload, list(allowed_roles))

    return dependency


def partner_id_of(actor: Actor) -> int:
    try:
        return int(actor.id)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token subject is not a partner ID",
        )
