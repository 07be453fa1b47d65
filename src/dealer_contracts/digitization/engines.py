"""Field extraction engines.

An engine turns a template document into a list of field boxes. Engines that
work asynchronously return ``None`` and report back through the digitization
callback endpoint instead.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from ..contracts.exceptions import UpstreamFailure, ValidationError
from ..contracts.models import SignatureField

logger = logging.getLogger(__name__)


def parse_fields(raw_fields: List[Dict[str, Any]]) -> List[SignatureField]:
    """Build SignatureField objects from engine or staff JSON."""
    fields = []
    for i, raw in enumerate(raw_fields or []):
        try:
            fields.append(raw if isinstance(raw, SignatureField) else SignatureField.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Field #{i} is malformed: {e}", field="fields")
    return fields


class ExtractionEngine(ABC):
    """Base class for extraction engines."""

    name = "base"

    @abstractmethod
    def extract(self, template_url: str, tenant_id: str, contract_id: str) -> Optional[List[SignatureField]]:
        """Detect fields on the template.

        Returns the fields, or None when the result will arrive later via
        callback. Raises UpstreamFailure when the engine cannot be reached.
        """
        pass


class NullExtractionEngine(ExtractionEngine):
    """Detects nothing; staff define the fields by hand."""

    name = "null"

    def extract(self, template_url: str, tenant_id: str, contract_id: str) -> Optional[List[SignatureField]]:
        logger.info(f"No extraction engine configured for contract {contract_id}")
        return []


class HttpExtractionEngine(ExtractionEngine):
    """Posts the template to an external OCR/layout service.

    A ``200`` response carrying ``fields`` is used directly. A ``202`` means the
    service accepted the job and will call ``callback_url`` when done.
    """

    name = "http"

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        callback_base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self.api_key = api_key
        self.callback_base_url = callback_base_url
        self.timeout = timeout

    def _callback_url(self, contract_id: str) -> Optional[str]:
        if not self.callback_base_url:
            return None
        return f"{self.callback_base_url.rstrip('/')}/v1/contracts/{contract_id}/digitization/callback"

    def extract(self, template_url: str, tenant_id: str, contract_id: str) -> Optional[List[SignatureField]]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "template_url": template_url,
            "tenant_id": tenant_id,
            "contract_id": contract_id,
            "callback_url": self._callback_url(contract_id),
        }

        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise UpstreamFailure(
                f"Extraction service error: {e}", service="extraction", status_code=status_code
            )

        if response.status_code == 202:
            logger.info(f"Extraction accepted for contract {contract_id}, awaiting callback")
            return None

        try:
            body = response.json()
        except ValueError:
            raise UpstreamFailure("Extraction service returned invalid JSON", service="extraction")
        return parse_fields(body.get("fields", []))
