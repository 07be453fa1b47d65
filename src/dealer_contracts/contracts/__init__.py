"""Contract aggregate: models, status machine, repository and errors."""

from .exceptions import (
    ContractError,
    NotFound,
    InvalidState,
    TokenExpired,
    ValidationError,
    UpstreamFailure,
    ConcurrencyConflict,
    AuthenticationError,
    AuthorizationError,
)
from .models import (
    Contract,
    ContractStatus,
    ContractType,
    DeliveryChannel,
    DeliveryStatus,
    Digitization,
    DigitizationStatus,
    FieldType,
    NotificationRecord,
    Signature,
    SignatureField,
    SignatureStatus,
    SignatureType,
    SignerRole,
    StatusChange,
)

__all__ = [
    'ContractError',
    'NotFound',
    'InvalidState',
    'TokenExpired',
    'ValidationError',
    'UpstreamFailure',
    'ConcurrencyConflict',
    'AuthenticationError',
    'AuthorizationError',
    'Contract',
    'ContractStatus',
    'ContractType',
    'DeliveryChannel',
    'DeliveryStatus',
    'Digitization',
    'DigitizationStatus',
    'FieldType',
    'NotificationRecord',
    'Signature',
    'SignatureField',
    'SignatureStatus',
    'SignatureType',
    'SignerRole',
    'StatusChange',
]
