"""Signature request protocol: invite, resolve, complete, decline.

Every state change runs inside ``ContractRepository.mutate``, so a token can
drive at most one terminal transition even when requests race. Expiry is
checked lazily: the first operation that finds a session past its
``expires_at`` moves the signature to ``expired`` and revokes the token.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .tokens import generate_token, normalize_signature_data, signing_url, token_hint
from ..contracts import state
from ..contracts.exceptions import (
    ContractError,
    InvalidState,
    NotFound,
    TokenExpired,
    ValidationError,
)
from ..contracts.models import (
    Contract,
    DeliveryChannel,
    Signature,
    SignatureStatus,
    SignatureType,
    SignerRole,
    utcnow,
)
from ..contracts.repository import (
    ContractRepository,
    append_signature,
    require_signature_field,
)
from ..storage.database import RevokeReason, TokenChanges, TokenRecord

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 7
MAX_EXPIRY_DAYS = 90

# Returned from a mutation when the session turned out to be expired.
_EXPIRED = object()

SignatureListener = Callable[[str, str], Any]


@dataclass
class SigningInvitation:
    """Result of inviting a signer."""

    token: str
    url: str
    signature_id: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "url": self.url,
            "signature_id": self.signature_id,
            "expires_at": self.expires_at.isoformat(),
        }


def parse_role(value) -> SignerRole:
    if isinstance(value, SignerRole):
        return value
    try:
        return SignerRole(value)
    except ValueError:
        raise ValidationError(f"Unknown signer role: {value}", field="signer")


def expire_signature(sig: Signature, tokens: TokenChanges):
    """Close a remote session whose link ran out."""
    sig.status = SignatureStatus.EXPIRED
    tokens.revoke(sig.token, RevokeReason.EXPIRED)
    sig.token = None


class SignatureRequestManager:
    """Issue and drive per-signer signing sessions."""

    def __init__(
        self,
        repository: ContractRepository,
        dispatcher=None,
        base_url: str = "http://localhost:8000",
        clock: Callable[[], datetime] = utcnow,
        default_expiry_days: int = DEFAULT_EXPIRY_DAYS,
        sender_name: str = "Your dealership",
        listeners: Optional[List[SignatureListener]] = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.base_url = base_url
        self.clock = clock
        self.default_expiry_days = default_expiry_days
        self.sender_name = sender_name
        self.listeners: List[SignatureListener] = list(listeners or [])

    def add_listener(self, listener: SignatureListener):
        """Register a callback run after a signature is captured."""
        self.listeners.append(listener)

    # === INVITES ===

    def invite(
        self,
        tenant_id: str,
        contract_id: str,
        signer_id,
        email: Optional[str],
        name: str,
        phone: Optional[str] = None,
        expires_in_days: Optional[int] = None,
        channels: Optional[List[DeliveryChannel]] = None,
        actor: Optional[str] = None,
    ) -> SigningInvitation:
        """Create (or rotate) the signing session for a signer role.

        Inviting a role that already has a live session revokes the old token
        in the same write, so a signer never holds two valid links.
        """
        role = parse_role(signer_id)
        if not name:
            raise ValidationError("Signer name is required", field="name")
        if not email and not phone:
            raise ValidationError("An email or phone number is required", field="email")
        if expires_in_days is None:
            expires_in_days = self.default_expiry_days
        if not 0 < expires_in_days <= MAX_EXPIRY_DAYS:
            raise ValidationError(
                f"expires_in_days must be between 1 and {MAX_EXPIRY_DAYS}", field="expires_in_days"
            )
        deliveries = self._deliveries(email, phone, channels)

        token = generate_token()

        def apply(contract: Contract, tokens: TokenChanges) -> Signature:
            now = self.clock()
            if contract.status.is_terminal:
                raise InvalidState(
                    f"Contract is {contract.status.value}", current_status=contract.status.value
                )
            require_signature_field(contract)

            sig = contract.get_signature_for_role(role)
            if sig is not None and sig.status.is_final:
                raise InvalidState(
                    f"Signer {role.value} has already {sig.status.value}",
                    current_status=sig.status.value,
                )
            if sig is None:
                sig = Signature(id=uuid.uuid4().hex, signer=role, signer_name=name)
            else:
                tokens.revoke(sig.token, RevokeReason.SUPERSEDED)

            sig.signer_name = name
            sig.signer_email = email
            sig.signer_phone = phone
            sig.signature_type = SignatureType.REMOTE
            sig.status = SignatureStatus.SENT
            sig.token = token
            sig.expires_at = now + timedelta(days=expires_in_days)
            sig.invited_at = now
            sig.viewed_at = None
            tokens.issue(token, sig.id, sig.expires_at)

            append_signature(contract, sig, now)
            return sig

        contract, sig = self.repository.mutate(tenant_id, contract_id, apply)
        invitation = SigningInvitation(
            token=token,
            url=signing_url(self.base_url, token),
            signature_id=sig.id,
            expires_at=sig.expires_at,
        )
        logger.info(
            f"Invited {role.value} on contract {contract_id} "
            f"(signature {sig.id}, token {token_hint(token)}, by {actor or 'system'})"
        )

        self._notify(contract, sig, invitation.url, "signature_request", deliveries)
        return invitation

    def remind(self, tenant_id: str, contract_id: str, signature_id: str) -> SigningInvitation:
        """Re-send the current link of a live session. The token is not rotated."""
        contract = self.repository.get(tenant_id, contract_id)
        sig = self._live_signature(contract, signature_id)
        if sig.is_expired(self.clock()):
            self._expire(tenant_id, contract_id, signature_id)

        url = signing_url(self.base_url, sig.token)
        self._notify(
            contract, sig, url, "signature_reminder",
            self._deliveries(sig.signer_email, sig.signer_phone, None),
        )
        logger.info(f"Reminder queued for signature {signature_id} on contract {contract_id}")
        return SigningInvitation(token=sig.token, url=url, signature_id=sig.id, expires_at=sig.expires_at)

    # === SESSIONS ===

    def resolve(self, token: str) -> Tuple[Contract, Signature]:
        """Open a signing session. The first resolve marks the signature viewed."""
        record = self._lookup(token)
        contract = self.repository.get(record.tenant_id, record.contract_id)
        sig = self._live_signature(contract, record.signature_id, token)
        if sig.status == SignatureStatus.VIEWED and not sig.is_expired(self.clock()):
            return contract, sig

        def apply(contract: Contract, tokens: TokenChanges):
            now = self.clock()
            sig = self._live_signature(contract, record.signature_id, token)
            if sig.is_expired(now):
                expire_signature(sig, tokens)
                contract.updated_at = now
                return _EXPIRED
            if sig.status == SignatureStatus.SENT:
                sig.status = SignatureStatus.VIEWED
                sig.viewed_at = now
                contract.updated_at = now
            return sig

        contract, sig = self.repository.mutate(record.tenant_id, record.contract_id, apply)
        if sig is _EXPIRED:
            raise TokenExpired(expires_at=record.expires_at)
        return contract, sig

    def complete(
        self,
        tenant_id: str,
        contract_id: str,
        signature_id: str,
        signature_data: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Contract:
        """Capture a signature and recompute the contract status atomically."""
        data = normalize_signature_data(signature_data)

        def apply(contract: Contract, tokens: TokenChanges):
            now = self.clock()
            sig = self._live_signature(contract, signature_id, token)
            if sig.is_expired(now):
                expire_signature(sig, tokens)
                contract.updated_at = now
                return _EXPIRED

            sig.status = SignatureStatus.SIGNED
            sig.signature_data = data
            sig.signed_at = now
            sig.ip_address = ip_address
            sig.user_agent = user_agent
            tokens.revoke(sig.token, RevokeReason.SIGNED)
            sig.token = None
            contract.updated_at = now
            state.recompute(contract, now, reason=f"{sig.signer.value} signed")
            return sig

        contract, sig = self.repository.mutate(tenant_id, contract_id, apply)
        if sig is _EXPIRED:
            raise TokenExpired(expires_at=contract.get_signature(signature_id).expires_at)

        logger.info(
            f"Signature {signature_id} ({sig.signer.value}) signed on contract {contract_id}; "
            f"contract is {contract.status.value}"
        )
        return self._signature_changed(contract)

    def decline(
        self,
        tenant_id: str,
        contract_id: str,
        signature_id: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Contract:
        """Decline a signing session. Terminal for that signer."""
        def apply(contract: Contract, tokens: TokenChanges):
            now = self.clock()
            sig = self._live_signature(contract, signature_id, token)
            if sig.is_expired(now):
                expire_signature(sig, tokens)
                contract.updated_at = now
                return _EXPIRED

            sig.status = SignatureStatus.DECLINED
            sig.declined_at = now
            sig.decline_reason = reason
            sig.ip_address = ip_address
            sig.user_agent = user_agent
            tokens.revoke(sig.token, RevokeReason.DECLINED)
            sig.token = None
            contract.updated_at = now
            return sig

        contract, sig = self.repository.mutate(tenant_id, contract_id, apply)
        if sig is _EXPIRED:
            raise TokenExpired(expires_at=contract.get_signature(signature_id).expires_at)

        logger.info(f"Signature {signature_id} ({sig.signer.value}) declined on contract {contract_id}")
        return contract

    def complete_by_token(
        self,
        token: str,
        signature_data: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Contract, Signature]:
        """Sign through a link. Returns the contract and the signature captured."""
        record = self._lookup(token)
        contract = self.complete(
            record.tenant_id, record.contract_id, record.signature_id, signature_data,
            ip_address=ip_address, user_agent=user_agent, token=token,
        )
        return contract, contract.get_signature(record.signature_id)

    def decline_by_token(
        self,
        token: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Contract, Signature]:
        record = self._lookup(token)
        contract = self.decline(
            record.tenant_id, record.contract_id, record.signature_id, reason=reason,
            ip_address=ip_address, user_agent=user_agent, token=token,
        )
        return contract, contract.get_signature(record.signature_id)

    def sign_in_person(
        self,
        tenant_id: str,
        contract_id: str,
        signer_role,
        signer_name: str,
        signature_data: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Contract:
        """Record a signature captured at the dealership.

        Any live remote session for the role is superseded.
        """
        role = parse_role(signer_role)
        if not signer_name:
            raise ValidationError("Signer name is required", field="signer_name")
        data = normalize_signature_data(signature_data)

        def apply(contract: Contract, tokens: TokenChanges) -> Signature:
            now = self.clock()
            if contract.status.is_terminal:
                raise InvalidState(
                    f"Contract is {contract.status.value}", current_status=contract.status.value
                )
            require_signature_field(contract)

            sig = contract.get_signature_for_role(role)
            if sig is not None and sig.status.is_final:
                raise InvalidState(
                    f"Signer {role.value} has already {sig.status.value}",
                    current_status=sig.status.value,
                )
            if sig is None:
                sig = Signature(id=uuid.uuid4().hex, signer=role, signer_name=signer_name)
            else:
                tokens.revoke(sig.token, RevokeReason.SUPERSEDED)

            sig.signer_name = signer_name
            sig.signer_email = email or sig.signer_email
            sig.signer_phone = phone or sig.signer_phone
            sig.signature_type = SignatureType.IN_PERSON
            sig.status = SignatureStatus.SIGNED
            sig.signature_data = data
            sig.signed_at = now
            sig.ip_address = ip_address
            sig.user_agent = user_agent
            sig.token = None
            sig.expires_at = None

            append_signature(contract, sig, now)
            return sig

        contract, sig = self.repository.mutate(tenant_id, contract_id, apply)
        logger.info(
            f"In-person signature {sig.id} ({role.value}) on contract {contract_id} "
            f"recorded by {actor or 'system'}"
        )
        return self._signature_changed(contract)

    # === EXPIRY ===

    def expire_stale(self, now: Optional[datetime] = None, limit: int = 500) -> int:
        """Expire every live session past its deadline. Returns how many."""
        now = now or self.clock()
        expired = 0

        for record in self.repository.find_expired_tokens(now, limit=limit):
            def apply(contract: Contract, tokens: TokenChanges, record=record) -> bool:
                sig = contract.get_signature(record.signature_id)
                if sig is None or sig.token != record.token:
                    # Index row outlived its signature session
                    tokens.revoke(record.token, RevokeReason.SUPERSEDED)
                    return False
                if not sig.status.is_live or not sig.is_expired(now):
                    return False
                expire_signature(sig, tokens)
                contract.updated_at = now
                return True

            try:
                _, changed = self.repository.mutate(record.tenant_id, record.contract_id, apply)
            except ContractError as e:
                logger.warning(f"Could not expire token {token_hint(record.token)}: {e}")
                continue
            if changed:
                expired += 1

        if expired:
            logger.info(f"Expired {expired} signing sessions")
        return expired

    # === INTERNALS ===

    def _lookup(self, token: str) -> TokenRecord:
        """Map a token to its session, rejecting unusable tokens."""
        record = self.repository.find_token(token) if token else None
        if record is None or record.revoked_reason == RevokeReason.SUPERSEDED:
            raise NotFound("Signing link not found")
        if record.revoked_reason == RevokeReason.EXPIRED:
            raise TokenExpired(expires_at=record.expires_at)
        if record.is_revoked:
            raise InvalidState(
                f"Signing link is no longer valid ({record.revoked_reason.value})",
                current_status=record.revoked_reason.value,
            )
        return record

    def _live_signature(
        self,
        contract: Contract,
        signature_id: str,
        token: Optional[str] = None,
    ) -> Signature:
        sig = contract.get_signature(signature_id)
        if sig is None:
            raise NotFound(f"Signature {signature_id} not found")
        if contract.status.is_terminal:
            raise InvalidState(
                f"Contract is {contract.status.value}", current_status=contract.status.value
            )
        if sig.status == SignatureStatus.EXPIRED:
            raise TokenExpired(expires_at=sig.expires_at)
        if not sig.status.is_live:
            raise InvalidState(
                f"Signature is {sig.status.value}", current_status=sig.status.value
            )
        if token is not None and sig.token != token:
            raise InvalidState("Signing link is no longer valid", current_status=sig.status.value)
        return sig

    def _expire(self, tenant_id: str, contract_id: str, signature_id: str):
        """Persist the expiry of one session, then raise TokenExpired."""
        def apply(contract: Contract, tokens: TokenChanges):
            sig = self._live_signature(contract, signature_id)
            expire_signature(sig, tokens)
            contract.updated_at = self.clock()
            return sig.expires_at

        _, expires_at = self.repository.mutate(tenant_id, contract_id, apply)
        raise TokenExpired(expires_at=expires_at)

    def _deliveries(
        self,
        email: Optional[str],
        phone: Optional[str],
        channels: Optional[List[DeliveryChannel]],
    ) -> List[Tuple[DeliveryChannel, str]]:
        if channels is None:
            channels = []
            if email:
                channels.append(DeliveryChannel.EMAIL)
            if phone:
                channels.append(DeliveryChannel.SMS)

        deliveries = []
        for channel in channels:
            recipient = email if channel == DeliveryChannel.EMAIL else phone
            if not recipient:
                raise ValidationError(
                    f"No recipient available for channel {channel.value}", field="channels"
                )
            deliveries.append((channel, recipient))
        return deliveries

    def _notify(self, contract: Contract, sig: Signature, url: str, template: str, deliveries):
        if self.dispatcher is None:
            return
        context = {
            "signer_name": sig.signer_name,
            "contract_name": contract.name,
            "dealer_name": self.sender_name,
            "expires_at": sig.expires_at.strftime("%B %d, %Y") if sig.expires_at else "",
        }
        try:
            self.dispatcher.dispatch(
                contract.tenant_id, contract.id, sig.id, deliveries, template, url, context,
            )
        except Exception as e:
            logger.warning(f"Could not queue {template} for contract {contract.id}: {e}")

    def _signature_changed(self, contract: Contract) -> Contract:
        """Run listeners after a captured signature; returns the latest contract."""
        for listener in self.listeners:
            try:
                listener(contract.tenant_id, contract.id)
            except Exception as e:
                logger.exception(f"Signature listener failed for contract {contract.id}: {e}")
        if not self.listeners:
            return contract
        return self.repository.get(contract.tenant_id, contract.id)
