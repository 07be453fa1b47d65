"""SQLite database for contracts and the signing token index."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, List, Generator, Tuple

from .migrations import run_migrations
from ..contracts.models import (
    Contract,
    ContractStatus,
    ContractType,
    Digitization,
    NotificationRecord,
    Signature,
    StatusChange,
    parse_datetime,
    utcnow,
)

logger = logging.getLogger(__name__)


class RevokeReason(Enum):
    """Why a signing token stopped being usable."""

    SIGNED = "signed"
    DECLINED = "declined"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class _VersionConflict(Exception):
    """Raised inside a transaction to force a rollback."""


@dataclass
class TokenRecord:
    """Row of the token index."""

    token: str
    tenant_id: str
    contract_id: str
    signature_id: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[RevokeReason] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


@dataclass
class TokenChanges:
    """Token index writes that must commit together with a contract write."""

    issued: List[Tuple[str, str, datetime]] = field(default_factory=list)
    revoked: List[Tuple[str, RevokeReason]] = field(default_factory=list)

    def issue(self, token: str, signature_id: str, expires_at: datetime):
        self.issued.append((token, signature_id, expires_at))

    def revoke(self, token: Optional[str], reason: RevokeReason):
        if token:
            self.revoked.append((token, reason))

    def __bool__(self) -> bool:
        return bool(self.issued or self.revoked)


class ContractDatabase:
    """SQLite database for storing contracts."""

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        """Initialize database and apply migrations."""
        if db_path is None:
            db_path = Path.home() / ".dealer-contracts" / "contracts.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
        run_migrations(str(self.db_path))

    def _row_to_contract(self, row: sqlite3.Row) -> Contract:
        """Convert a database row to a Contract object."""
        digitization = json.loads(row["digitization_json"]) if row["digitization_json"] else {}
        signatures = json.loads(row["signatures_json"]) if row["signatures_json"] else []
        notifications = json.loads(row["notifications_json"]) if row["notifications_json"] else []
        history = json.loads(row["history_json"]) if row["history_json"] else []

        return Contract(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"],
            contract_type=ContractType(row["contract_type"]),
            template_id=row["template_id"],
            sale_id=row["sale_id"],
            lead_id=row["lead_id"],
            vehicle_id=row["vehicle_id"],
            fi_request_id=row["fi_request_id"],
            original_document_url=row["original_document_url"],
            digitized_document_url=row["digitized_document_url"],
            final_document_url=row["final_document_url"],
            digitization=Digitization.from_dict(digitization),
            signatures=[Signature.from_dict(s) for s in signatures],
            notifications_sent=[NotificationRecord.from_dict(n) for n in notifications],
            status_history=[StatusChange.from_dict(h) for h in history],
            last_assembly_error=row["last_assembly_error"],
            status=ContractStatus(row["status"]),
            version=row["version"],
            created_by=row["created_by"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            completed_at=parse_datetime(row["completed_at"]),
        )

    def _row_to_token(self, row: sqlite3.Row) -> TokenRecord:
        return TokenRecord(
            token=row["token"],
            tenant_id=row["tenant_id"],
            contract_id=row["contract_id"],
            signature_id=row["signature_id"],
            expires_at=parse_datetime(row["expires_at"]),
            revoked_at=parse_datetime(row["revoked_at"]),
            revoked_reason=RevokeReason(row["revoked_reason"]) if row["revoked_reason"] else None,
        )

    @staticmethod
    def _contract_values(contract: Contract) -> dict:
        data = contract.to_dict()
        return {
            "name": contract.name,
            "description": contract.description,
            "contract_type": contract.contract_type.value,
            "template_id": contract.template_id,
            "sale_id": contract.sale_id,
            "lead_id": contract.lead_id,
            "vehicle_id": contract.vehicle_id,
            "fi_request_id": contract.fi_request_id,
            "original_document_url": contract.original_document_url,
            "digitized_document_url": contract.digitized_document_url,
            "final_document_url": contract.final_document_url,
            "digitization_json": json.dumps(data["digitization"]),
            "signatures_json": json.dumps(data["signatures"]),
            "notifications_json": json.dumps(data["notifications_sent"]),
            "history_json": json.dumps(data["status_history"]),
            "last_assembly_error": contract.last_assembly_error,
            "status": contract.status.value,
            "created_by": contract.created_by,
            "created_at": data["created_at"],
            "updated_at": data["updated_at"],
            "completed_at": data["completed_at"],
        }

    # === CONTRACTS ===

    def insert_contract(self, contract: Contract) -> Contract:
        values = self._contract_values(contract)
        values["id"] = contract.id
        values["tenant_id"] = contract.tenant_id
        values["version"] = contract.version

        columns = ", ".join(values.keys())
        placeholders = ", ".join(f":{k}" for k in values.keys())
        with self._get_connection() as conn:
            conn.execute(f"INSERT INTO contracts ({columns}) VALUES ({placeholders})", values)
        return contract

    def get_contract(self, tenant_id: str, contract_id: str) -> Optional[Contract]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM contracts WHERE id = ? AND tenant_id = ?",
                (contract_id, tenant_id),
            ).fetchone()
            return self._row_to_contract(row) if row else None

    def list_contracts(
        self,
        tenant_id: str,
        sale_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        status: Optional[ContractStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Contract]:
        query = "SELECT * FROM contracts WHERE tenant_id = ?"
        params: list = [tenant_id]

        if sale_id:
            query += " AND sale_id = ?"
            params.append(sale_id)
        if lead_id:
            query += " AND lead_id = ?"
            params.append(lead_id)
        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._get_connection() as conn:
            return [self._row_to_contract(row) for row in conn.execute(query, params).fetchall()]

    def save_contract(
        self,
        contract: Contract,
        expected_version: int,
        token_changes: Optional[TokenChanges] = None,
    ) -> bool:
        """Write the contract if nobody else wrote it since ``expected_version``.

        Token index changes commit in the same transaction. Returns False on a
        version conflict, in which case nothing was written.
        """
        values = self._contract_values(contract)
        assignments = ", ".join(f"{k} = :{k}" for k in values.keys())
        values.update({
            "id": contract.id,
            "tenant_id": contract.tenant_id,
            "expected_version": expected_version,
        })
        now = utcnow().isoformat()

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    f"UPDATE contracts SET {assignments}, version = version + 1 "
                    "WHERE id = :id AND tenant_id = :tenant_id AND version = :expected_version",
                    values,
                )
                if cursor.rowcount == 0:
                    raise _VersionConflict()

                if token_changes:
                    for token, reason in token_changes.revoked:
                        conn.execute(
                            "UPDATE signature_tokens SET revoked_at = ?, revoked_reason = ? "
                            "WHERE token = ? AND revoked_at IS NULL",
                            (now, reason.value, token),
                        )
                    for token, signature_id, expires_at in token_changes.issued:
                        conn.execute(
                            "INSERT INTO signature_tokens "
                            "(token, tenant_id, contract_id, signature_id, expires_at, created_at) "
                            "VALUES (?, ?, ?, ?, ?, ?)",
                            (token, contract.tenant_id, contract.id, signature_id,
                             expires_at.isoformat(), now),
                        )
        except _VersionConflict:
            logger.debug(f"Version conflict on contract {contract.id} (expected {expected_version})")
            return False

        contract.version = expected_version + 1
        return True

    # === TOKEN INDEX ===

    def find_token(self, token: str) -> Optional[TokenRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM signature_tokens WHERE token = ?", (token,)
            ).fetchone()
            return self._row_to_token(row) if row else None

    def find_expired_tokens(self, now: datetime, limit: int = 500) -> List[TokenRecord]:
        """Live (unrevoked) tokens whose session is past its expiry."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM signature_tokens WHERE revoked_at IS NULL AND expires_at < ? "
                "ORDER BY expires_at LIMIT ?",
                (now.isoformat(), limit),
            ).fetchall()
            return [self._row_to_token(row) for row in rows]

    def ping(self):
        with self._get_connection() as conn:
            conn.execute("SELECT 1")
