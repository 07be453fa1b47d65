"""Pydantic models for the contract and signing API."""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ContractCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = "other"
    original_document_url: str = Field(..., min_length=1)
    description: Optional[str] = None
    template_id: Optional[str] = None
    sale_id: Optional[str] = None
    lead_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    fi_request_id: Optional[str] = None


class FieldSchema(BaseModel):
    id: str
    type: str = Field(..., description="signature, initial, date or text")
    x: float = Field(..., ge=0, le=1)
    y: float = Field(..., ge=0, le=1)
    width: float = Field(..., ge=0, le=1)
    height: float = Field(..., ge=0, le=1)
    signer: str = Field(..., description="buyer, seller, dealer, cosigner or witness")
    required: bool = True
    label: Optional[str] = None
    page: int = Field(1, ge=1)


class FieldsRequest(BaseModel):
    fields: List[FieldSchema]


class DigitizeRequest(BaseModel):
    template_url: Optional[str] = None


class DigitizationCallbackRequest(BaseModel):
    status: str = Field(..., description="completed or failed")
    fields: List[FieldSchema] = []
    document_url: Optional[str] = None
    error: Optional[str] = None


class InviteRequest(BaseModel):
    signer: str = Field(..., description="Signer role")
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    expires_in_days: Optional[int] = None
    channels: Optional[List[str]] = Field(None, description="email, sms, whatsapp")


class InPersonSignRequest(BaseModel):
    signer: str
    signer_name: str = Field(..., min_length=1)
    signature_data: str = Field(..., description="Base64 PNG of the signature")
    email: Optional[str] = None
    phone: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class SignRequest(BaseModel):
    signature_data: str = Field(..., description="Base64 PNG of the signature")


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class ContractResponse(BaseModel):
    success: bool = True
    contract: Dict[str, Any]


class ContractListResponse(BaseModel):
    success: bool = True
    contracts: List[Dict[str, Any]]
    count: int


class InvitationResponse(BaseModel):
    success: bool = True
    signature_id: str
    url: str
    token: str
    expires_at: str


class SigningSessionResponse(BaseModel):
    success: bool = True
    contract: Dict[str, Any]
    signature: Dict[str, Any]
    fields: List[Dict[str, Any]]


class SigningResultResponse(BaseModel):
    success: bool = True
    signature_status: str
    contract_status: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str
