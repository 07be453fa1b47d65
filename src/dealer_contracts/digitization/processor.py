"""Digitization processor: template document -> field layout.

Extraction runs off the request thread. Its outcome, whether it comes back
from the engine directly or through the HTTP callback, lands in
``handle_result`` or ``handle_failure``. Digitization never changes the
contract status.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .engines import ExtractionEngine, NullExtractionEngine, parse_fields
from ..contracts.exceptions import InvalidState, ValidationError
from ..contracts.models import (
    Contract,
    Digitization,
    DigitizationStatus,
    SignatureField,
    utcnow,
)
from ..contracts.repository import ContractRepository
from ..integrations.document_store import DocumentStore

logger = logging.getLogger(__name__)

FieldInput = Union[SignatureField, Dict[str, Any]]


class DigitizationProcessor:
    """Runs field extraction for contracts."""

    def __init__(
        self,
        repository: ContractRepository,
        engine: Optional[ExtractionEngine] = None,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 2,
        store: Optional[DocumentStore] = None,
    ):
        self.repository = repository
        self.engine = engine or NullExtractionEngine()
        self.clock = clock
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="digitize")
        self._lock = threading.Lock()
        self.pending: Dict[str, Future] = {}

    def submit(self, contract: Contract, template_url: Optional[str] = None) -> Contract:
        """Mark digitization as processing and start the engine."""
        template_url = template_url or contract.original_document_url
        if not template_url:
            raise ValidationError("template_url is required", field="template_url")
        if self.store is not None:
            self.store.check_url(template_url, field="template_url")
        if contract.status.is_terminal:
            raise InvalidState(
                f"Contract is {contract.status.value}", current_status=contract.status.value
            )
        if contract.signed_count:
            raise InvalidState(
                "Fields cannot change after a signature was captured",
                current_status=contract.status.value,
            )

        processing = Digitization(
            status=DigitizationStatus.PROCESSING,
            extracted_fields=list(contract.digitization.extracted_fields),
            template_url=template_url,
            submitted_at=self.clock(),
        )
        updated = self.repository.update_digitization(contract.tenant_id, contract.id, processing)
        logger.info(f"Digitization submitted for contract {contract.id} via {self.engine.name} engine")

        with self._lock:
            self.pending = {k: f for k, f in self.pending.items() if not f.done()}
            self.pending[contract.id] = self._executor.submit(
                self._run, contract.tenant_id, contract.id, template_url
            )
        return updated

    def _run(self, tenant_id: str, contract_id: str, template_url: str):
        try:
            fields = self.engine.extract(template_url, tenant_id, contract_id)
        except Exception as e:
            logger.warning(f"Extraction failed for contract {contract_id}: {e}")
            self._record_failure(tenant_id, contract_id, str(e))
            return

        if fields is None:
            return
        try:
            self.handle_result(tenant_id, contract_id, fields)
        except (InvalidState, ValidationError) as e:
            logger.warning(f"Discarding extraction result for contract {contract_id}: {e}")
            self._record_failure(tenant_id, contract_id, str(e))

    def _record_failure(self, tenant_id: str, contract_id: str, error: str):
        try:
            self.handle_failure(tenant_id, contract_id, error)
        except InvalidState as e:
            logger.info(f"Not recording digitization failure for contract {contract_id}: {e}")
        except Exception as e:
            logger.exception(f"Could not record digitization failure for contract {contract_id}: {e}")

    def handle_result(
        self,
        tenant_id: str,
        contract_id: str,
        fields: List[FieldInput],
        document_url: Optional[str] = None,
    ) -> Contract:
        """Store extracted fields and mark digitization completed.

        An empty result is rejected; the current layout stays in place.
        """
        parsed = parse_fields(fields)
        if not parsed:
            raise ValidationError("Extraction found no fields", field="fields")

        current = self.repository.get(tenant_id, contract_id).digitization
        result = Digitization(
            status=DigitizationStatus.COMPLETED,
            extracted_fields=parsed,
            template_url=current.template_url,
            submitted_at=current.submitted_at,
            completed_at=self.clock(),
        )
        contract = self.repository.update_digitization(
            tenant_id, contract_id, result, expected_status=DigitizationStatus.PROCESSING,
        )
        if document_url:
            contract = self.repository.set_digitized_document(tenant_id, contract_id, document_url)

        logger.info(
            f"Digitization completed for contract {contract_id}: "
            f"{len(result.extracted_fields)} fields, {len(result.signature_fields)} signature boxes"
        )
        return contract

    def handle_failure(self, tenant_id: str, contract_id: str, error: str) -> Contract:
        """Mark a running digitization failed. Existing fields are kept."""
        current = self.repository.get(tenant_id, contract_id).digitization

        result = Digitization(
            status=DigitizationStatus.FAILED,
            extracted_fields=list(current.extracted_fields),
            template_url=current.template_url,
            error=error or "unknown error",
            submitted_at=current.submitted_at,
            completed_at=self.clock(),
        )
        return self.repository.update_digitization(
            tenant_id, contract_id, result, expected_status=DigitizationStatus.PROCESSING,
        )

    def define_fields(self, tenant_id: str, contract_id: str, fields: List[FieldInput]) -> Contract:
        """Replace the field layout by hand."""
        parsed = parse_fields(fields)
        if not parsed:
            raise ValidationError("At least one field is required", field="fields")

        contract = self.repository.get(tenant_id, contract_id)
        now = self.clock()
        result = Digitization(
            status=DigitizationStatus.COMPLETED,
            extracted_fields=parsed,
            template_url=contract.digitization.template_url,
            submitted_at=contract.digitization.submitted_at or now,
            completed_at=now,
        )
        contract = self.repository.update_digitization(tenant_id, contract_id, result)
        logger.info(f"Fields defined manually for contract {contract_id}: {len(parsed)} fields")
        return contract

    def wait(self, contract_id: str, timeout: Optional[float] = None):
        """Block until the extraction started for ``contract_id`` finishes."""
        with self._lock:
            future = self.pending.pop(contract_id, None)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
