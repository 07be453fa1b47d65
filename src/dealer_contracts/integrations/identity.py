"""Caller identity and authorization."""

import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..contracts.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)


class ActorRole(Enum):
    """Roles a staff caller can hold."""

    ADMIN = "admin"
    DEALER = "dealer"
    SELLER = "seller"
    VIEWER = "viewer"
    SERVICE = "service"


class Action(Enum):
    """Operations that need authorization."""

    READ = "read"
    CREATE = "create"
    INVITE = "invite"
    CANCEL = "cancel"
    EDIT_FIELDS = "edit_fields"
    COMPLETE = "complete"
    SIGN_IN_PERSON = "sign_in_person"
    DIGITIZATION_CALLBACK = "digitization_callback"


STAFF_ROLES = {ActorRole.ADMIN, ActorRole.DEALER, ActorRole.SELLER}

PERMISSIONS = {
    Action.READ: STAFF_ROLES | {ActorRole.VIEWER},
    Action.CREATE: STAFF_ROLES,
    Action.INVITE: STAFF_ROLES,
    Action.CANCEL: STAFF_ROLES,
    Action.EDIT_FIELDS: STAFF_ROLES,
    Action.COMPLETE: STAFF_ROLES,
    Action.SIGN_IN_PERSON: STAFF_ROLES,
    Action.DIGITIZATION_CALLBACK: {ActorRole.ADMIN, ActorRole.SERVICE},
}


@dataclass
class Actor:
    """The authenticated caller."""

    tenant_id: str
    role: ActorRole
    user_id: Optional[str] = None

    @property
    def label(self) -> str:
        return self.user_id or f"{self.role.value}@{self.tenant_id}"


class IdentityDirectory(ABC):
    """Resolves caller credentials to an Actor."""

    @abstractmethod
    def resolve_actor(self, credentials: Optional[str]) -> Actor:
        """Return the actor for ``credentials`` or raise AuthenticationError."""
        pass

    def authorize(self, actor: Actor, action: Action, tenant_id: Optional[str] = None):
        """Raise AuthorizationError unless ``actor`` may perform ``action``."""
        if tenant_id is not None and tenant_id != actor.tenant_id:
            raise AuthorizationError(f"Actor {actor.label} cannot act on tenant {tenant_id}")
        if actor.role not in PERMISSIONS[action]:
            raise AuthorizationError(f"Role {actor.role.value} is not allowed to {action.value}")


class ApiKeyDirectory(IdentityDirectory):
    """Static API keys mapped to actors.

    Keys are configured as JSON::

        {"<key>": {"tenant_id": "t1", "role": "dealer", "user_id": "u1"}}
    """

    def __init__(self, keys: Optional[Dict[str, Actor]] = None):
        self.keys: Dict[str, Actor] = dict(keys or {})

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ApiKeyDirectory":
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
            keys = {
                key: Actor(
                    tenant_id=entry["tenant_id"],
                    role=ActorRole(entry.get("role", ActorRole.DEALER.value)),
                    user_id=entry.get("user_id"),
                )
                for key, entry in data.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid API key configuration: {e}")
        return cls(keys)

    def add_key(self, key: str, actor: Actor):
        self.keys[key] = actor

    def resolve_actor(self, credentials: Optional[str]) -> Actor:
        if credentials:
            for key, actor in self.keys.items():
                if hmac.compare_digest(credentials.encode(), key.encode()):
                    return actor
        raise AuthenticationError("Invalid or missing authentication")
