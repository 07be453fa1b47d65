"""Contract repository: owns the Contract aggregate and its status machine.

Every transition-bearing operation goes through ``mutate``, an optimistic
read-modify-write scoped to a single contract row. Contracts never lock each
other.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import state
from .exceptions import ConcurrencyConflict, InvalidState, NotFound, ValidationError
from .models import (
    Contract,
    ContractStatus,
    ContractType,
    Digitization,
    DigitizationStatus,
    NotificationRecord,
    Signature,
    utcnow,
)
from ..integrations.document_store import DocumentStore
from ..storage.database import ContractDatabase, RevokeReason, TokenChanges, TokenRecord

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 10

LINK_FIELDS = ("sale_id", "lead_id", "vehicle_id", "fi_request_id")

Mutation = Callable[[Contract, TokenChanges], Any]


def validate_fields(digitization: Digitization):
    """Check field ids are unique and boxes sit inside the page."""
    seen = set()
    for f in digitization.extracted_fields:
        if f.id in seen:
            raise ValidationError(f"Duplicate field id: {f.id}", field="extracted_fields")
        seen.add(f.id)
        for name in ("x", "y", "width", "height"):
            value = getattr(f, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(
                    f"Field {f.id}: {name} must be between 0 and 1", field="extracted_fields"
                )
        if f.x + f.width > 1.0 or f.y + f.height > 1.0:
            raise ValidationError(f"Field {f.id} extends past the page", field="extracted_fields")
        if f.page < 1:
            raise ValidationError(f"Field {f.id}: page must be >= 1", field="extracted_fields")


class ContractRepository:
    """Tenant-scoped access to contracts."""

    def __init__(
        self,
        db: ContractDatabase,
        clock: Callable[[], datetime] = utcnow,
        store: Optional[DocumentStore] = None,
    ):
        self.db = db
        self.clock = clock
        self.store = store

    # === READS ===

    def get(self, tenant_id: str, contract_id: str) -> Contract:
        contract = self.db.get_contract(tenant_id, contract_id)
        if contract is None:
            raise NotFound(f"Contract {contract_id} not found")
        return contract

    def list_contracts(
        self,
        tenant_id: str,
        sale_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        status: Optional[ContractStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Contract]:
        return self.db.list_contracts(
            tenant_id, sale_id=sale_id, lead_id=lead_id, status=status,
            limit=limit, offset=offset,
        )

    def find_token(self, token: str) -> Optional[TokenRecord]:
        return self.db.find_token(token)

    def find_expired_tokens(self, now: datetime, limit: int = 500) -> List[TokenRecord]:
        return self.db.find_expired_tokens(now, limit=limit)

    # === WRITES ===

    def create(self, tenant_id: str, data: Dict[str, Any]) -> Contract:
        """Create a contract in draft."""
        if not tenant_id:
            raise ValidationError("tenant_id is required", field="tenant_id")
        if not data.get("original_document_url"):
            raise ValidationError("original_document_url is required", field="original_document_url")
        if not data.get("name"):
            raise ValidationError("name is required", field="name")
        if not data.get("created_by"):
            raise ValidationError("created_by is required", field="created_by")

        try:
            contract_type = ContractType(data.get("type", ContractType.OTHER.value))
        except ValueError:
            raise ValidationError(f"Unknown contract type: {data.get('type')}", field="type")
        if self.store is not None:
            self.store.check_url(data["original_document_url"], field="original_document_url")

        now = self.clock()
        contract = Contract(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            name=data["name"],
            description=data.get("description"),
            contract_type=contract_type,
            template_id=data.get("template_id"),
            original_document_url=data["original_document_url"],
            created_by=data["created_by"],
            created_at=now,
            updated_at=now,
            **{k: data.get(k) for k in LINK_FIELDS},
        )
        self.db.insert_contract(contract)
        logger.info(f"Created contract {contract.id} for tenant {tenant_id}")
        return contract

    def mutate(self, tenant_id: str, contract_id: str, fn: Mutation):
        """Atomically apply ``fn`` to the contract.

        ``fn`` receives the freshly loaded contract and a TokenChanges
        collector, mutates the contract in place and may return a value. On a
        concurrent write the contract is reloaded and ``fn`` runs again, so it
        must not have side effects outside the contract. Exceptions raised by
        ``fn`` abort the write.

        Returns ``(contract, result)``.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            contract = self.get(tenant_id, contract_id)
            expected_version = contract.version
            tokens = TokenChanges()

            result = fn(contract, tokens)

            if self.db.save_contract(contract, expected_version, tokens):
                return contract, result
            logger.info(f"Write conflict on contract {contract_id}, retrying (attempt {attempt})")

        raise ConcurrencyConflict(
            f"Contract {contract_id} is being modified concurrently; gave up after "
            f"{MAX_WRITE_ATTEMPTS} attempts"
        )

    def update_digitization(
        self,
        tenant_id: str,
        contract_id: str,
        result: Digitization,
        expected_status: Optional[DigitizationStatus] = None,
    ) -> Contract:
        """Store digitization status and fields. Never changes contract status.

        With ``expected_status`` the write only applies while digitization is
        still in that status. While signers hold live links the layout must
        keep a signature box for each of their roles.
        """
        validate_fields(result)

        def apply(contract: Contract, tokens: TokenChanges):
            if contract.status.is_terminal:
                raise InvalidState(
                    f"Contract is {contract.status.value}", current_status=contract.status.value
                )
            current = contract.digitization.status
            if expected_status is not None and current != expected_status:
                raise InvalidState(
                    f"Digitization is {current.value}, not {expected_status.value}",
                    current_status=current.value,
                )
            if contract.signed_count and result.extracted_fields != contract.digitization.extracted_fields:
                raise InvalidState(
                    "Fields cannot change after a signature was captured",
                    current_status=contract.status.value,
                )
            invited = {s.signer for s in live_signatures(contract)}
            missing = invited - {f.signer for f in result.signature_fields}
            if missing:
                roles = ", ".join(sorted(r.value for r in missing))
                raise InvalidState(
                    f"Layout has no signature box for invited signers: {roles}",
                    current_status=contract.status.value,
                )
            contract.digitization = result
            contract.updated_at = self.clock()

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def set_digitized_document(self, tenant_id: str, contract_id: str, url: str) -> Contract:
        def apply(contract: Contract, tokens: TokenChanges):
            contract.digitized_document_url = url
            contract.updated_at = self.clock()

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def add_signature(self, tenant_id: str, contract_id: str, entry: Signature) -> Contract:
        """Append (or replace by id) a signature entry.

        A draft contract moves to pending_signatures.
        """
        def apply(contract: Contract, tokens: TokenChanges):
            append_signature(contract, entry, self.clock())

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def recompute_status(self, tenant_id: str, contract_id: str) -> Contract:
        """Derive status from the signatures. Idempotent."""
        contract = self.get(tenant_id, contract_id)
        if state.derive_status(contract) == contract.status or contract.status.is_terminal:
            return contract

        def apply(contract: Contract, tokens: TokenChanges):
            state.recompute(contract, self.clock())

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def mark_completed(self, tenant_id: str, contract_id: str, final_document_url: str) -> Contract:
        """fully_signed -> completed. Re-marking a completed contract is a no-op."""
        if not final_document_url:
            raise ValidationError("final_document_url is required to complete", field="final_document_url")

        def apply(contract: Contract, tokens: TokenChanges):
            if contract.status == ContractStatus.COMPLETED:
                return False
            if contract.status != ContractStatus.FULLY_SIGNED:
                raise InvalidState(
                    f"Only fully signed contracts can be completed (status: {contract.status.value})",
                    current_status=contract.status.value,
                )
            now = self.clock()
            contract.final_document_url = final_document_url
            contract.completed_at = now
            contract.last_assembly_error = None
            state.transition(contract, ContractStatus.COMPLETED, now, "final document assembled")
            # Optional signers still holding a link can no longer sign.
            for sig in live_signatures(contract):
                tokens.revoke(sig.token, RevokeReason.COMPLETED)
                sig.token = None
            return True

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def record_assembly_failure(self, tenant_id: str, contract_id: str, error: str) -> Contract:
        def apply(contract: Contract, tokens: TokenChanges):
            contract.last_assembly_error = error
            contract.updated_at = self.clock()

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def cancel(
        self,
        tenant_id: str,
        contract_id: str,
        actor: Optional[str] = None,
        reason: str = "",
    ) -> Contract:
        """Cancel a non-terminal contract and revoke every live signing link."""
        def apply(contract: Contract, tokens: TokenChanges):
            now = self.clock()
            state.transition(contract, ContractStatus.CANCELLED, now, reason or "cancelled", actor)
            for sig in contract.signatures:
                if sig.token:
                    tokens.revoke(sig.token, RevokeReason.CANCELLED)
                    sig.token = None

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract

    def record_notification(self, tenant_id: str, contract_id: str, record: NotificationRecord) -> Contract:
        def apply(contract: Contract, tokens: TokenChanges):
            contract.notifications_sent.append(record)

        contract, _ = self.mutate(tenant_id, contract_id, apply)
        return contract


def append_signature(contract: Contract, entry: Signature, now: datetime):
    """Add ``entry`` to the contract in memory and recompute status."""
    if contract.status.is_terminal:
        raise InvalidState(
            f"Contract is {contract.status.value}", current_status=contract.status.value
        )
    existing = contract.get_signature(entry.id)
    if existing is not None:
        if existing.status.is_final and existing.status != entry.status:
            raise InvalidState(
                f"Signature {entry.id} is already {existing.status.value}",
                current_status=existing.status.value,
            )
        contract.signatures[contract.signatures.index(existing)] = entry
    else:
        contract.signatures.append(entry)

    contract.updated_at = now
    if contract.status == ContractStatus.DRAFT:
        state.transition(contract, ContractStatus.PENDING_SIGNATURES, now, "first signer invited")
    state.recompute(contract, now, reason=f"signature {entry.id} {entry.status.value}")


def require_signature_field(contract: Contract):
    """Signers can only be invited once a signature box exists."""
    if not contract.digitization.signature_fields:
        raise InvalidState(
            "Contract has no signature fields; digitize or define fields first",
            current_status=contract.status.value,
        )


def live_signatures(contract: Contract) -> List[Signature]:
    return [s for s in contract.signatures if s.status.is_live]
