"""Public signing routes. The token in the path is the only credential."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from ..dependencies import client_ip, get_services, user_agent
from ..schemas.contract import (
    DeclineRequest,
    ErrorResponse,
    SigningResultResponse,
    SigningSessionResponse,
    SignRequest,
)
from ...contracts.models import Contract, Signature
from ...service import ContractServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/sign",
    tags=["signing"],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        410: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)


def _public_contract(contract: Contract) -> Dict[str, Any]:
    """What a signer may see about the contract."""
    return {
        "id": contract.id,
        "name": contract.name,
        "description": contract.description,
        "type": contract.contract_type.value,
        "status": contract.status.value,
        "document_url": contract.digitized_document_url or contract.original_document_url,
    }


def _public_signature(sig: Signature) -> Dict[str, Any]:
    return {
        "id": sig.id,
        "signer": sig.signer.value,
        "signer_name": sig.signer_name,
        "status": sig.status.value,
        "expires_at": sig.expires_at.isoformat() if sig.expires_at else None,
    }


@router.get("/{token}", response_model=SigningSessionResponse)
def open_session(token: str, services: ContractServices = Depends(get_services)):
    """Resolve a signing link. The first visit marks the signature viewed."""
    contract, sig = services.signing.resolve(token)
    fields = [
        f.to_dict() for f in contract.digitization.extracted_fields
        if f.signer == sig.signer
    ]
    return SigningSessionResponse(
        contract=_public_contract(contract),
        signature=_public_signature(sig),
        fields=fields,
    )


@router.post("/{token}", response_model=SigningResultResponse)
def submit_signature(
    token: str,
    payload: SignRequest,
    request: Request,
    services: ContractServices = Depends(get_services),
):
    contract, sig = services.signing.complete_by_token(
        token,
        payload.signature_data,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    return SigningResultResponse(signature_status=sig.status.value, contract_status=contract.status.value)


@router.post("/{token}/decline", response_model=SigningResultResponse)
def decline_signature(
    token: str,
    request: Request,
    payload: Optional[DeclineRequest] = Body(None),
    services: ContractServices = Depends(get_services),
):
    contract, sig = services.signing.decline_by_token(
        token,
        reason=payload.reason if payload else None,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    return SigningResultResponse(signature_status=sig.status.value, contract_status=contract.status.value)
