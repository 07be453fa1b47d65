"""Contract status machine.

Status is derived from the signatures array; the helpers here are pure and
operate on an in-memory Contract inside a repository mutation.
"""

import logging
from datetime import datetime
from typing import Optional, Set

from .exceptions import InvalidState
from .models import Contract, ContractStatus, SignatureStatus, SignerRole, StatusChange

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ContractStatus.DRAFT: {ContractStatus.PENDING_SIGNATURES, ContractStatus.CANCELLED},
    ContractStatus.PENDING_SIGNATURES: {ContractStatus.PARTIALLY_SIGNED, ContractStatus.CANCELLED},
    ContractStatus.PARTIALLY_SIGNED: {ContractStatus.FULLY_SIGNED, ContractStatus.CANCELLED},
    ContractStatus.FULLY_SIGNED: {ContractStatus.COMPLETED, ContractStatus.CANCELLED},
    ContractStatus.COMPLETED: set(),
    ContractStatus.CANCELLED: set(),
}

# Ordering used to keep derived status monotonic.
_RANK = {
    ContractStatus.DRAFT: 0,
    ContractStatus.PENDING_SIGNATURES: 1,
    ContractStatus.PARTIALLY_SIGNED: 2,
    ContractStatus.FULLY_SIGNED: 3,
    ContractStatus.COMPLETED: 4,
}


def required_roles(contract: Contract) -> Set[SignerRole]:
    """Roles owning at least one required signature field."""
    return {
        f.signer for f in contract.digitization.signature_fields
        if f.required
    }


def signed_roles(contract: Contract) -> Set[SignerRole]:
    """Required roles that already have a signed signature."""
    signed = {s.signer for s in contract.signatures if s.status == SignatureStatus.SIGNED}
    return signed & required_roles(contract)


def derive_status(contract: Contract) -> ContractStatus:
    """Status implied by the current signatures, ignoring history."""
    if contract.status.is_terminal:
        return contract.status
    if not contract.signatures:
        return ContractStatus.DRAFT

    required = len(required_roles(contract))
    signed = len(signed_roles(contract))

    if required and signed == required:
        return ContractStatus.FULLY_SIGNED
    if signed > 0:
        return ContractStatus.PARTIALLY_SIGNED
    return ContractStatus.PENDING_SIGNATURES


def can_transition(current: ContractStatus, target: ContractStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    contract: Contract,
    target: ContractStatus,
    now: datetime,
    reason: str = "",
    actor: Optional[str] = None,
):
    """Move the contract to ``target`` along an allowed edge."""
    if not can_transition(contract.status, target):
        raise InvalidState(
            f"Cannot move contract from {contract.status.value} to {target.value}",
            current_status=contract.status.value,
        )
    contract.status_history.append(StatusChange(
        from_status=contract.status,
        to_status=target,
        changed_at=now,
        reason=reason,
        actor=actor,
    ))
    logger.info(f"Contract {contract.id}: {contract.status.value} -> {target.value} ({reason})")
    contract.status = target
    contract.updated_at = now


def recompute(contract: Contract, now: datetime, reason: str = "recompute") -> bool:
    """Apply the derived status. Returns True if the status changed.

    Never moves backwards: the signed count cannot decrease, and a status
    already reached is kept if the derivation would rank lower.
    """
    derived = derive_status(contract)
    if derived == contract.status or contract.status.is_terminal:
        return False
    if _RANK[derived] < _RANK[contract.status]:
        return False

    changed = False
    if contract.status == ContractStatus.DRAFT and derived != ContractStatus.DRAFT:
        transition(contract, ContractStatus.PENDING_SIGNATURES, now, reason)
        changed = True
    # Completing every required role in one write still records partially_signed.
    if contract.status == ContractStatus.PENDING_SIGNATURES and derived == ContractStatus.FULLY_SIGNED:
        transition(contract, ContractStatus.PARTIALLY_SIGNED, now, reason)
        changed = True
    if derived != contract.status:
        transition(contract, derived, now, reason)
        changed = True
    return changed
