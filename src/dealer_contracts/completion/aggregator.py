"""Completion aggregator: closes a contract once every required signer signed."""

import logging

from .assembler import PackageAssembler
from ..contracts.exceptions import InvalidState, UpstreamFailure
from ..contracts.models import Contract, ContractStatus
from ..contracts.repository import ContractRepository

logger = logging.getLogger(__name__)


class CompletionAggregator:
    """Recomputes status after signature changes and finalizes the package."""

    def __init__(self, repository: ContractRepository, assembler: PackageAssembler):
        self.repository = repository
        self.assembler = assembler

    def on_signature_change(self, tenant_id: str, contract_id: str) -> Contract:
        """Recompute status; assemble and complete when fully signed.

        An assembly failure is recorded on the contract, which stays
        ``fully_signed`` so it can be retried.
        """
        contract = self.repository.recompute_status(tenant_id, contract_id)
        if contract.status != ContractStatus.FULLY_SIGNED:
            return contract

        try:
            return self._finalize(contract)
        except UpstreamFailure:
            return self.repository.get(tenant_id, contract_id)

    def retry(self, tenant_id: str, contract_id: str) -> Contract:
        """Re-run assembly for a fully signed contract. Surfaces UpstreamFailure."""
        contract = self.repository.recompute_status(tenant_id, contract_id)
        if contract.status == ContractStatus.COMPLETED:
            return contract
        if contract.status != ContractStatus.FULLY_SIGNED:
            raise InvalidState(
                f"Only fully signed contracts can be assembled (status: {contract.status.value})",
                current_status=contract.status.value,
            )
        return self._finalize(contract)

    def _finalize(self, contract: Contract) -> Contract:
        try:
            url = self.assembler.assemble(contract)
        except UpstreamFailure as e:
            logger.warning(f"Assembly failed for contract {contract.id}: {e}")
            self.repository.record_assembly_failure(contract.tenant_id, contract.id, str(e))
            raise

        return self.repository.mark_completed(contract.tenant_id, contract.id, url)
