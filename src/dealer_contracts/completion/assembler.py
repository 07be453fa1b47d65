"""Final signed-package assembly.

The package is a ZIP holding the original document, one PNG per captured
signature and a ``manifest.json`` describing fields and signers. Entries use
a fixed timestamp and order, so assembling the same contract twice yields the
same bytes at the same path.
"""

import base64
import hashlib
import io
import json
import logging
import zipfile
from pathlib import PurePosixPath
from typing import Any, Dict, List
from urllib.parse import urlparse

from ..contracts.exceptions import InvalidState
from ..contracts.models import Contract, Signature, SignatureStatus
from ..integrations.document_store import DocumentStore

logger = logging.getLogger(__name__)

ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
PACKAGE_CONTENT_TYPE = "application/zip"


def package_path(contract: Contract) -> str:
    return f"contracts/{contract.tenant_id}/{contract.id}/final.zip"


def _original_name(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix
    return f"original{suffix or '.pdf'}"


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class PackageAssembler:
    """Builds the final package and writes it to the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def build(self, contract: Contract, original: bytes) -> bytes:
        """Build the ZIP bytes for a contract."""
        signed = sorted(
            (s for s in contract.signatures if s.status == SignatureStatus.SIGNED),
            key=lambda s: (s.signer.value, s.id),
        )
        if not signed:
            raise InvalidState("Contract has no signatures to assemble", current_status=contract.status.value)

        images = {sig.id: base64.b64decode(sig.signature_data) for sig in signed}
        original_name = _original_name(contract.original_document_url)
        manifest = self._manifest(contract, original_name, original, signed, images)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            self._write(archive, original_name, original)
            for sig in signed:
                self._write(archive, self._image_name(sig), images[sig.id])
            self._write(archive, "manifest.json", json.dumps(manifest, indent=2, sort_keys=True).encode())
        return buffer.getvalue()

    def assemble(self, contract: Contract) -> str:
        """Fetch the original, build the package and store it. Returns its URL.

        Raises UpstreamFailure when the document store cannot be reached.
        """
        original = self.store.get(contract.original_document_url)
        package = self.build(contract, original)
        url = self.store.put(package, PACKAGE_CONTENT_TYPE, package_path(contract))
        logger.info(f"Assembled final package for contract {contract.id} ({len(package)} bytes)")
        return url

    @staticmethod
    def _image_name(sig: Signature) -> str:
        return f"signatures/{sig.signer.value}-{sig.id}.png"

    @staticmethod
    def _write(archive: zipfile.ZipFile, name: str, data: bytes):
        info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        archive.writestr(info, data)

    def _manifest(
        self,
        contract: Contract,
        original_name: str,
        original: bytes,
        signed: List[Signature],
        images: Dict[str, bytes],
    ) -> Dict[str, Any]:
        return {
            "contract": {
                "id": contract.id,
                "tenant_id": contract.tenant_id,
                "name": contract.name,
                "type": contract.contract_type.value,
                "sale_id": contract.sale_id,
                "lead_id": contract.lead_id,
                "vehicle_id": contract.vehicle_id,
                "fi_request_id": contract.fi_request_id,
            },
            "original_document": {
                "file": original_name,
                "url": contract.original_document_url,
                "sha256": _sha256(original),
            },
            "fields": [f.to_dict() for f in contract.digitization.extracted_fields],
            "signers": [
                {
                    "signature_id": sig.id,
                    "role": sig.signer.value,
                    "name": sig.signer_name,
                    "email": sig.signer_email,
                    "phone": sig.signer_phone,
                    "signature_type": sig.signature_type.value,
                    "signed_at": sig.signed_at.isoformat() if sig.signed_at else None,
                    "ip_address": sig.ip_address,
                    "user_agent": sig.user_agent,
                    "image": self._image_name(sig),
                    "image_sha256": _sha256(images[sig.id]),
                }
                for sig in signed
            ],
        }
