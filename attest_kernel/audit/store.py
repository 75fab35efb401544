"""
Disclosure Audit Log — append-only, cryptographically chained event record.

Every attestation issuance/revocation and every verification decision
produces one AuditRecord.

Behavioral Contract:
- Append-only. No record is ever modified or deleted.
- Each record is hashed and chained to the previous record (tamper-evident).
- Approved disclosures carry the proof hash plus every input needed to
  recompute it, so the proofs can be re-verified from the log alone.
- Queryable by identity, by subject (attestation / verification id), recency.
"""

import hashlib
import json
import logging
import sqlite3
import threading
from typing import List, Optional

from attest_kernel.models.audit import AuditEvent, AuditRecord
from attest_kernel.models.verification import DisclosureProof
from attest_kernel.proof.generator import verify_proof

logger = logging.getLogger(__name__)


def _record_signature(record: AuditRecord) -> str:
    record_dict = record.model_dump(mode="json")
    # Zero out signature before hashing (it's what we're computing)
    record_dict["signature"] = ""
    record_bytes = json.dumps(record_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(record_bytes).hexdigest()


class AuditLog:
    """
    Append-only audit log.
    Prototype: SQLite. Production: a write-once store with row-level security.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _init_schema(self) -> None:
        """Create the audit table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit (
                id TEXT PRIMARY KEY,
                event TEXT NOT NULL,
                identity_id TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_identity_id ON audit(identity_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_subject_id ON audit(subject_id)
        """)
        self._conn.commit()

    def append(self, record: AuditRecord) -> AuditRecord:
        """
        Append an audit record. Computes its hash and chains it to the
        previous record.
        """
        with self._lock:
            record.prior_record_hash = self._get_latest_hash()
            record.signature = _record_signature(record)

            self._conn.execute(
                """
                INSERT INTO audit (
                    id, event, identity_id, subject_id, actor_id, occurred_at,
                    signature, prior_record_hash, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.event.value,
                    record.identity_id,
                    record.subject_id,
                    record.actor_id,
                    record.occurred_at.isoformat(),
                    record.signature,
                    record.prior_record_hash,
                    record.model_dump_json(),
                ),
            )
            self._conn.commit()
        return record

    def _get_latest_hash(self) -> Optional[str]:
        """Get the signature of the most recent record."""
        row = self._conn.execute(
            "SELECT signature FROM audit ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> AuditRecord:
        return AuditRecord.model_validate_json(row["record_json"])

    def get_by_id(self, record_id: str) -> Optional[AuditRecord]:
        rows = self._fetchall("SELECT record_json FROM audit WHERE id = ?", (record_id,))
        return self._deserialize(rows[0]) if rows else None

    def query_by_identity(self, identity_id: str) -> List[AuditRecord]:
        """Everything that ever happened to one identity, oldest first."""
        rows = self._fetchall(
            "SELECT record_json FROM audit WHERE identity_id = ? ORDER BY rowid",
            (identity_id,),
        )
        return [self._deserialize(r) for r in rows]

    def query_by_subject(self, subject_id: str) -> List[AuditRecord]:
        """All events for one attestation or verification."""
        rows = self._fetchall(
            "SELECT record_json FROM audit WHERE subject_id = ? ORDER BY rowid",
            (subject_id,),
        )
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[AuditRecord]:
        rows = self._fetchall(
            "SELECT record_json FROM audit ORDER BY rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._deserialize(r) for r in reversed(rows)]

    def verify_chain_integrity(self) -> bool:
        """Verify no records have been tampered with or dropped from the middle."""
        rows = self._fetchall("SELECT record_json, signature FROM audit ORDER BY rowid")

        for i, row in enumerate(rows):
            record = self._deserialize(row)
            if record.signature != row["signature"]:
                return False
            if _record_signature(record) != record.signature:
                return False
            prior = rows[i - 1]["signature"] if i > 0 else None
            if record.prior_record_hash != prior:
                return False

        return True

    def verify_disclosure_proofs(self) -> List[str]:
        """
        Recompute the proof of every approved disclosure from the logged
        inputs. Returns the ids of records whose proof does not match.
        """
        mismatched = []
        rows = self._fetchall(
            "SELECT record_json FROM audit WHERE event = ? ORDER BY rowid",
            (AuditEvent.VERIFICATION_APPROVED.value,),
        )
        for row in rows:
            record = self._deserialize(row)
            proof = DisclosureProof(
                method=record.proof_method or "",
                hash=record.proof_hash or "",
            )
            if not verify_proof(
                proof,
                record.identity_id,
                record.counterparty_id or "",
                record.fields,
                record.occurred_at,
            ):
                logger.warning("Disclosure proof mismatch in audit record %s", record.id)
                mismatched.append(record.id)
        return mismatched

    def count(self) -> int:
        rows = self._fetchall("SELECT COUNT(*) as cnt FROM audit")
        return rows[0]["cnt"]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
