"""Request dependencies: service lookup, caller identity, client metadata."""

from typing import Optional

from fastapi import Depends, Request

from ..integrations.identity import Action, Actor
from ..service import ContractServices


def get_services(request: Request) -> ContractServices:
    return request.app.state.services


def api_key_from(request: Request) -> Optional[str]:
    """Read the API key from ``X-API-Key`` or ``Authorization: Bearer``."""
    key = request.headers.get("X-API-Key")
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return None


def get_actor(request: Request, services: ContractServices = Depends(get_services)) -> Actor:
    return services.identity.resolve_actor(api_key_from(request))


def require(action: Action):
    """Dependency that authenticates the caller and checks ``action``."""

    def dependency(
        actor: Actor = Depends(get_actor),
        services: ContractServices = Depends(get_services),
    ) -> Actor:
        services.identity.authorize(actor, action)
        return actor

    return dependency


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("User-Agent")
