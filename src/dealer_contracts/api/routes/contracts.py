"""Staff-facing contract routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request

from ..dependencies import client_ip, get_services, require, user_agent
from ..schemas.contract import (
    CancelRequest,
    ContractCreateRequest,
    ContractListResponse,
    ContractResponse,
    DigitizationCallbackRequest,
    DigitizeRequest,
    ErrorResponse,
    FieldsRequest,
    InPersonSignRequest,
    InvitationResponse,
    InviteRequest,
)
from ...contracts.exceptions import ValidationError
from ...contracts.models import Contract, ContractStatus, DeliveryChannel
from ...integrations.identity import Action, Actor
from ...service import ContractServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/contracts",
    tags=["contracts"],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)


def _envelope(contract: Contract) -> ContractResponse:
    return ContractResponse(contract=contract.to_dict(include_secrets=False))


def _parse_status(value: Optional[str]) -> Optional[ContractStatus]:
    if not value:
        return None
    try:
        return ContractStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value}", field="status")


def _parse_channels(values):
    if values is None:
        return None
    try:
        return [DeliveryChannel(v) for v in values]
    except ValueError as e:
        raise ValidationError(str(e), field="channels")


@router.post("", response_model=ContractResponse, status_code=201)
def create_contract(
    payload: ContractCreateRequest,
    actor: Actor = Depends(require(Action.CREATE)),
    services: ContractServices = Depends(get_services),
):
    data = payload.model_dump()
    data["created_by"] = actor.label
    contract = services.repository.create(actor.tenant_id, data)
    return _envelope(contract)


@router.get("", response_model=ContractListResponse)
def list_contracts(
    sale_id: Optional[str] = None,
    lead_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    actor: Actor = Depends(require(Action.READ)),
    services: ContractServices = Depends(get_services),
):
    contracts = services.repository.list_contracts(
        actor.tenant_id,
        sale_id=sale_id,
        lead_id=lead_id,
        status=_parse_status(status),
        limit=max(1, min(limit, 500)),
        offset=max(0, offset),
    )
    return ContractListResponse(
        contracts=[c.to_dict(include_secrets=False) for c in contracts],
        count=len(contracts),
    )


@router.get("/{contract_id}", response_model=ContractResponse)
def get_contract(
    contract_id: str,
    actor: Actor = Depends(require(Action.READ)),
    services: ContractServices = Depends(get_services),
):
    return _envelope(services.repository.get(actor.tenant_id, contract_id))


@router.post("/{contract_id}/digitize", response_model=ContractResponse, status_code=202)
def digitize(
    contract_id: str,
    payload: Optional[DigitizeRequest] = Body(None),
    actor: Actor = Depends(require(Action.EDIT_FIELDS)),
    services: ContractServices = Depends(get_services),
):
    """Start field extraction. Results arrive asynchronously."""
    contract = services.repository.get(actor.tenant_id, contract_id)
    template_url = payload.template_url if payload else None
    return _envelope(services.digitization.submit(contract, template_url))


@router.put("/{contract_id}/fields", response_model=ContractResponse)
def define_fields(
    contract_id: str,
    payload: FieldsRequest,
    actor: Actor = Depends(require(Action.EDIT_FIELDS)),
    services: ContractServices = Depends(get_services),
):
    fields = [f.model_dump() for f in payload.fields]
    return _envelope(services.digitization.define_fields(actor.tenant_id, contract_id, fields))


@router.post("/{contract_id}/digitization/callback", response_model=ContractResponse)
def digitization_callback(
    contract_id: str,
    payload: DigitizationCallbackRequest,
    actor: Actor = Depends(require(Action.DIGITIZATION_CALLBACK)),
    services: ContractServices = Depends(get_services),
):
    """Result delivery for an external extraction engine."""
    if payload.status == "completed":
        contract = services.digitization.handle_result(
            actor.tenant_id,
            contract_id,
            [f.model_dump() for f in payload.fields],
            document_url=payload.document_url,
        )
    elif payload.status == "failed":
        contract = services.digitization.handle_failure(actor.tenant_id, contract_id, payload.error or "")
    else:
        raise ValidationError(f"Unknown digitization status: {payload.status}", field="status")
    return _envelope(contract)


@router.post("/{contract_id}/signers", response_model=InvitationResponse, status_code=201)
def invite_signer(
    contract_id: str,
    payload: InviteRequest,
    actor: Actor = Depends(require(Action.INVITE)),
    services: ContractServices = Depends(get_services),
):
    invitation = services.signing.invite(
        actor.tenant_id,
        contract_id,
        payload.signer,
        email=payload.email,
        name=payload.name,
        phone=payload.phone,
        expires_in_days=payload.expires_in_days,
        channels=_parse_channels(payload.channels),
        actor=actor.label,
    )
    return InvitationResponse(**invitation.to_dict())


@router.post("/{contract_id}/signatures/{signature_id}/remind", response_model=InvitationResponse)
def remind_signer(
    contract_id: str,
    signature_id: str,
    actor: Actor = Depends(require(Action.INVITE)),
    services: ContractServices = Depends(get_services),
):
    invitation = services.signing.remind(actor.tenant_id, contract_id, signature_id)
    return InvitationResponse(**invitation.to_dict())


@router.post("/{contract_id}/sign", response_model=ContractResponse)
def sign_in_person(
    contract_id: str,
    payload: InPersonSignRequest,
    request: Request,
    actor: Actor = Depends(require(Action.SIGN_IN_PERSON)),
    services: ContractServices = Depends(get_services),
):
    """Capture a signature at the dealership."""
    contract = services.signing.sign_in_person(
        actor.tenant_id,
        contract_id,
        payload.signer,
        payload.signer_name,
        payload.signature_data,
        email=payload.email,
        phone=payload.phone,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        actor=actor.label,
    )
    return _envelope(contract)


@router.post("/{contract_id}/cancel", response_model=ContractResponse)
def cancel_contract(
    contract_id: str,
    payload: Optional[CancelRequest] = Body(None),
    actor: Actor = Depends(require(Action.CANCEL)),
    services: ContractServices = Depends(get_services),
):
    reason = payload.reason if payload else None
    contract = services.repository.cancel(actor.tenant_id, contract_id, actor=actor.label, reason=reason or "")
    return _envelope(contract)


@router.post("/{contract_id}/complete", response_model=ContractResponse, responses={502: {"model": ErrorResponse}})
def complete_contract(
    contract_id: str,
    actor: Actor = Depends(require(Action.COMPLETE)),
    services: ContractServices = Depends(get_services),
):
    """Retry final assembly for a fully signed contract."""
    return _envelope(services.completion.retry(actor.tenant_id, contract_id))
