"""
Dependency providers for the HTTP layer.

Identity is asserted upstream by the authentication gateway, which
forwards the caller as X-User-Id / X-User-Role headers.
"""

import logging
from typing import Annotated, Optional

from fastapi import Header, HTTPException, Request, status

from macommune.schemas.demande import Principal, Role
from macommune.services.lifecycle import RequestLifecycleManager

logger = logging.getLogger("macommune.api")


def get_principal(
    x_user_id: Annotated[
        Optional[int],
        Header(description="Authenticated user id, set by the gateway"),
    ] = None,
    x_user_role: Annotated[
        Optional[str],
        Header(description="Authenticated user role, set by the gateway"),
    ] = None,
) -> Principal:
    """Build the calling principal from the gateway headers."""
    if x_user_id is None or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentification requise.",
        )

    try:
        role = Role(x_user_role.strip().lower())
    except ValueError:
        logger.warning("unknown_principal_role", extra={"role": x_user_role})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès interdit : rôle inconnu.",
        ) from None

    if x_user_id < 1:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Identifiant utilisateur invalide.",
        )

    return Principal(id=x_user_id, role=role)


def get_lifecycle(request: Request) -> RequestLifecycleManager:
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise RuntimeError("lifecycle manager not initialized")
    return lifecycle
