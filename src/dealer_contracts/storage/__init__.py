"""Storage module for persisting contracts."""

from .database import ContractDatabase, RevokeReason, TokenChanges, TokenRecord
from .migrations import run_migrations

__all__ = ['ContractDatabase', 'RevokeReason', 'TokenChanges', 'TokenRecord', 'run_migrations']
