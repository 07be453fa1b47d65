"""Data models for contracts, digitized fields and signatures."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ContractType(Enum):
    """Kinds of contract a dealer can issue."""

    PURCHASE = "purchase"
    LEASE = "lease"
    FINANCING = "financing"
    SERVICE = "service"
    WARRANTY = "warranty"
    OTHER = "other"


class ContractStatus(Enum):
    """Overall contract status."""

    DRAFT = "draft"
    PENDING_SIGNATURES = "pending_signatures"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ContractStatus.COMPLETED, ContractStatus.CANCELLED)


class DigitizationStatus(Enum):
    """Field extraction progress."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FieldType(Enum):
    """Kinds of fillable box on a template."""

    SIGNATURE = "signature"
    INITIAL = "initial"
    DATE = "date"
    TEXT = "text"


class SignerRole(Enum):
    """Parties that can be asked to sign."""

    BUYER = "buyer"
    SELLER = "seller"
    DEALER = "dealer"
    COSIGNER = "cosigner"
    WITNESS = "witness"


class SignatureType(Enum):
    """How the signature is captured."""

    IN_PERSON = "in_person"
    REMOTE = "remote"


class SignatureStatus(Enum):
    """Individual signer status."""

    PENDING = "pending"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_live(self) -> bool:
        """True while the signing session can still be used."""
        return self in (SignatureStatus.SENT, SignatureStatus.VIEWED)

    @property
    def is_final(self) -> bool:
        return self in (SignatureStatus.SIGNED, SignatureStatus.DECLINED)


class DeliveryChannel(Enum):
    """Channels signing links can be delivered over."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class DeliveryStatus(Enum):
    """Outcome of a single delivery attempt."""

    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class SignatureField:
    """A fillable box located on the contract template.

    Coordinates are fractions of the page size, so they survive re-rendering
    the document at a different resolution.
    """

    id: str
    type: FieldType
    x: float
    y: float
    width: float
    height: float
    signer: SignerRole
    required: bool = True
    label: Optional[str] = None
    page: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "required": self.required,
            "signer": self.signer.value,
            "label": self.label,
            "page": self.page,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignatureField":
        return cls(
            id=str(data["id"]),
            type=FieldType(data["type"]),
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            signer=SignerRole(data["signer"]),
            required=bool(data.get("required", True)),
            label=data.get("label"),
            page=int(data.get("page", 1)),
        )


@dataclass
class Digitization:
    """Result of turning an uploaded template into a field layout."""

    status: DigitizationStatus = DigitizationStatus.PENDING
    extracted_fields: List[SignatureField] = field(default_factory=list)
    template_url: Optional[str] = None
    error: Optional[str] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def signature_fields(self) -> List[SignatureField]:
        return [f for f in self.extracted_fields if f.type == FieldType.SIGNATURE]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "extracted_fields": [f.to_dict() for f in self.extracted_fields],
            "template_url": self.template_url,
            "error": self.error,
            "submitted_at": _iso(self.submitted_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Digitization":
        return cls(
            status=DigitizationStatus(data.get("status", "pending")),
            extracted_fields=[SignatureField.from_dict(f) for f in data.get("extracted_fields", [])],
            template_url=data.get("template_url"),
            error=data.get("error"),
            submitted_at=parse_datetime(data.get("submitted_at")),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class Signature:
    """One invited (or in-person) signer on a contract."""

    id: str
    signer: SignerRole
    signer_name: str
    signer_email: Optional[str] = None
    signer_phone: Optional[str] = None
    signature_type: SignatureType = SignatureType.REMOTE

    status: SignatureStatus = SignatureStatus.PENDING
    signature_data: Optional[str] = None  # Base64 image, only when signed
    signed_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    # Remote session
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    invited_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None

    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "signer": self.signer.value,
            "signer_name": self.signer_name,
            "signer_email": self.signer_email,
            "signer_phone": self.signer_phone,
            "signature_type": self.signature_type.value,
            "status": self.status.value,
            "signature_data": self.signature_data,
            "signed_at": _iso(self.signed_at),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "token": self.token,
            "expires_at": _iso(self.expires_at),
            "invited_at": _iso(self.invited_at),
            "viewed_at": _iso(self.viewed_at),
            "declined_at": _iso(self.declined_at),
            "decline_reason": self.decline_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(
            id=data["id"],
            signer=SignerRole(data["signer"]),
            signer_name=data.get("signer_name", ""),
            signer_email=data.get("signer_email"),
            signer_phone=data.get("signer_phone"),
            signature_type=SignatureType(data.get("signature_type", "remote")),
            status=SignatureStatus(data.get("status", "pending")),
            signature_data=data.get("signature_data"),
            signed_at=parse_datetime(data.get("signed_at")),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            token=data.get("token"),
            expires_at=parse_datetime(data.get("expires_at")),
            invited_at=parse_datetime(data.get("invited_at")),
            viewed_at=parse_datetime(data.get("viewed_at")),
            declined_at=parse_datetime(data.get("declined_at")),
            decline_reason=data.get("decline_reason"),
        )


@dataclass
class NotificationRecord:
    """Audit entry for one signing-link delivery attempt."""

    to: str
    channel: DeliveryChannel
    template: str
    status: DeliveryStatus
    signature_id: Optional[str] = None
    sent_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "channel": self.channel.value,
            "template": self.template,
            "status": self.status.value,
            "signature_id": self.signature_id,
            "sent_at": _iso(self.sent_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationRecord":
        return cls(
            to=data["to"],
            channel=DeliveryChannel(data["channel"]),
            template=data["template"],
            status=DeliveryStatus(data["status"]),
            signature_id=data.get("signature_id"),
            sent_at=parse_datetime(data.get("sent_at")) or utcnow(),
            error=data.get("error"),
        )


@dataclass
class StatusChange:
    """One contract status transition."""

    from_status: ContractStatus
    to_status: ContractStatus
    changed_at: datetime
    reason: str = ""
    actor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_status.value,
            "to": self.to_status.value,
            "changed_at": _iso(self.changed_at),
            "reason": self.reason,
            "actor": self.actor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusChange":
        return cls(
            from_status=ContractStatus(data["from"]),
            to_status=ContractStatus(data["to"]),
            changed_at=parse_datetime(data["changed_at"]),
            reason=data.get("reason", ""),
            actor=data.get("actor"),
        )


@dataclass
class Contract:
    """A legal document tracked from draft to completion."""

    id: str
    tenant_id: str
    name: str
    original_document_url: str
    created_by: str

    contract_type: ContractType = ContractType.OTHER
    description: Optional[str] = None
    template_id: Optional[str] = None

    # Relations
    sale_id: Optional[str] = None
    lead_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    fi_request_id: Optional[str] = None

    # Documents
    digitized_document_url: Optional[str] = None
    final_document_url: Optional[str] = None

    digitization: Digitization = field(default_factory=Digitization)
    signatures: List[Signature] = field(default_factory=list)
    status: ContractStatus = ContractStatus.DRAFT

    # Audit
    notifications_sent: List[NotificationRecord] = field(default_factory=list)
    status_history: List[StatusChange] = field(default_factory=list)
    last_assembly_error: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    version: int = 0

    def get_signature(self, signature_id: str) -> Optional[Signature]:
        return next((s for s in self.signatures if s.id == signature_id), None)

    def get_signature_for_role(self, role: SignerRole) -> Optional[Signature]:
        """Latest signature entry for a signer role."""
        matches = [s for s in self.signatures if s.signer == role]
        return matches[-1] if matches else None

    @property
    def signed_count(self) -> int:
        return len([s for s in self.signatures if s.status == SignatureStatus.SIGNED])

    def to_dict(self, include_secrets: bool = True) -> Dict[str, Any]:
        """Serialize the contract.

        With ``include_secrets=False`` signing tokens are stripped, which is
        what staff-facing API responses use.
        """
        signatures = [s.to_dict() for s in self.signatures]
        if not include_secrets:
            for sig in signatures:
                sig["token"] = None
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "type": self.contract_type.value,
            "template_id": self.template_id,
            "sale_id": self.sale_id,
            "lead_id": self.lead_id,
            "vehicle_id": self.vehicle_id,
            "fi_request_id": self.fi_request_id,
            "original_document_url": self.original_document_url,
            "digitized_document_url": self.digitized_document_url,
            "final_document_url": self.final_document_url,
            "digitization": self.digitization.to_dict(),
            "signatures": signatures,
            "status": self.status.value,
            "notifications_sent": [n.to_dict() for n in self.notifications_sent],
            "status_history": [h.to_dict() for h in self.status_history],
            "last_assembly_error": self.last_assembly_error,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "version": self.version,
        }
