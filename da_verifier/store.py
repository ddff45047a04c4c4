"""
Persistent verification store.

SQLite-backed key-value cache for the node plus a flat table of verdicts used
for stats and history. Keys:

    tx:<id>                           verdict record (authoritative once written)
    tx:failed                         list of failed tx records
    block:<number>                    BlockInfo
    tx_da_metadata:<id>               raw publication blob mirror
    tx_timestamp_proof_metadata:<id>  raw timestamp proof blob mirror
    signature:<chain signature>       tx id that first used the signature
    cursor                            ingestion pagination bookmark

All writes are INSERT OR REPLACE; every value written for a key is the same
whichever task writes it, so concurrent writers need no locking.
"""

import json
import logging
import os
import sqlite3
import threading
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import BlockInfo, TxValidatedResult

log = logging.getLogger(__name__)

FAILED_TX_KEY = "tx:failed"
CURSOR_KEY = "cursor"

# Seconds a writer waits on the SQLite lock; store calls run in worker threads
BUSY_TIMEOUT = 30.0


class VerificationStore:
    """SQLite-based persistent storage for verdicts and cached chain/storage data."""

    def __init__(self, db_path: str = None):
        if db_path is None:
            cache_dir = Path(os.getenv("CACHE_DIR", "cache"))
            cache_dir.mkdir(parents=True, exist_ok=True)
            db_path = str(cache_dir / "da_verifier.db")

        self.db_path = db_path
        self._failed_lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT)

    def _init_db(self):
        """Initialize database tables."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS verified_transactions (
                    tx_id TEXT PRIMARY KEY,
                    success INTEGER,
                    failure_reason TEXT,
                    publication_id TEXT,
                    verified_at TEXT
                )
            """)
            conn.commit()

    # ------------------------------------------------------------------------
    # Raw key-value access
    # ------------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, key: str, value: Any):
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()

    # ------------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------------

    def get_tx_result(self, tx_id: str) -> Optional[TxValidatedResult]:
        data = self.get(f"tx:{tx_id}")
        return TxValidatedResult.from_dict(data) if data else None

    def save_tx_result(self, result: TxValidatedResult):
        """Save a verdict and index its chain signature on success."""
        self.put(f"tx:{result.proof_tx_id}", result.to_dict())

        publication = result.data_availability_result or {}
        with self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO verified_transactions
                (tx_id, success, failure_reason, publication_id, verified_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                result.proof_tx_id,
                1 if result.success else 0,
                result.failure_reason,
                publication.get("publicationId"),
                datetime.now(timezone.utc).isoformat(),
            ))
            conn.commit()

        if result.success:
            chain_signature = (
                publication.get("chainProofs", {}).get("thisPublication", {}).get("signature")
            )
            if chain_signature and self.get(f"signature:{chain_signature}") is None:
                self.put(f"signature:{chain_signature}", result.proof_tx_id)

    def has_signature_been_used(self, signature: str, tx_id: Optional[str] = None) -> bool:
        """True if a tx other than ``tx_id`` already passed with this chain signature."""
        owner = self.get(f"signature:{signature}")
        return owner is not None and owner != tx_id

    def get_failed_transactions(self) -> List[Dict[str, Any]]:
        return self.get(FAILED_TX_KEY) or []

    def save_failed_transaction(self, tx_id: str, reason: str, submitter: Optional[str] = None):
        """Append to the ``tx:failed`` list."""
        with self._failed_lock:
            failed = [f for f in self.get_failed_transactions() if f.get("txId") != tx_id]
            failed.append({"txId": tx_id, "reason": reason, "submitter": submitter})
            self.put(FAILED_TX_KEY, failed)

    # ------------------------------------------------------------------------
    # Chain and storage caches
    # ------------------------------------------------------------------------

    def get_block(self, block_number: int) -> Optional[BlockInfo]:
        data = self.get(f"block:{block_number}")
        return BlockInfo.from_dict(data) if data else None

    def save_block(self, block: BlockInfo):
        self.put(f"block:{block.number}", block.to_dict())

    def get_tx_da_metadata(self, tx_id: str) -> Optional[Dict[str, Any]]:
        return self.get(f"tx_da_metadata:{tx_id}")

    def save_tx_da_metadata(self, tx_id: str, publication: Dict[str, Any]):
        self.put(f"tx_da_metadata:{tx_id}", publication)

    def get_tx_timestamp_proofs_metadata(self, tx_id: str) -> Optional[Dict[str, Any]]:
        return self.get(f"tx_timestamp_proof_metadata:{tx_id}")

    def save_tx_timestamp_proofs_metadata(self, tx_id: str, proofs: Dict[str, Any]):
        self.put(f"tx_timestamp_proof_metadata:{tx_id}", proofs)

    def get_last_end_cursor(self) -> Optional[str]:
        return self.get(CURSOR_KEY)

    def save_end_cursor(self, cursor: str):
        self.put(CURSOR_KEY, cursor)

    # ------------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------------

    def get_verification_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get recent verdicts, newest first."""
        with self._connect() as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute("""
                SELECT * FROM verified_transactions
                ORDER BY verified_at DESC
                LIMIT ?
            """, (limit,))
            return [dict(row) for row in cursor.fetchall()]

    def get_stats(self) -> Dict[str, Any]:
        """Get verification statistics."""
        with self._connect() as conn:
            total = conn.execute("SELECT COUNT(*) FROM verified_transactions").fetchone()[0]
            passed = conn.execute(
                "SELECT COUNT(*) FROM verified_transactions WHERE success = 1"
            ).fetchone()[0]
            reasons = conn.execute(
                "SELECT failure_reason FROM verified_transactions WHERE success = 0"
            ).fetchall()

        return {
            "total_verified": total,
            "passed": passed,
            "failed": total - passed,
            "failure_reasons": dict(Counter(row[0] for row in reasons)),
            "pass_rate": passed / total if total > 0 else 0,
        }
