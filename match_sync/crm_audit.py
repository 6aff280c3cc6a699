"""
CRM Write Audit Log

Every relation write made against the CRM (create/delete) is recorded in
the crm_write_log table so a broken stage sync can be traced afterwards.

Usage:
    from match_sync.crm_audit import log_crm_write

    log_crm_write(
        operation='create_relation',
        endpoint='associations/relations',
        http_method='POST',
        match_id='recMatch1',
        relation_id='rel_123',
        success=True,
    )
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .config import config

logger = logging.getLogger(__name__)

SCHEMA = '''
CREATE TABLE IF NOT EXISTS crm_write_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    occurred_at TEXT NOT NULL,
    operation TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    http_method TEXT NOT NULL,
    match_id TEXT,
    relation_id TEXT,
    association_id TEXT,
    payload_summary TEXT,
    success INTEGER NOT NULL,
    error_message TEXT
)
'''


def log_crm_write(
    operation: str,
    endpoint: str,
    http_method: str,
    match_id: str = None,
    relation_id: str = None,
    association_id: str = None,
    payload_summary: str = None,
    success: bool = True,
    error_message: str = None,
    db_path: Optional[Union[str, Path]] = None,
) -> None:
    """
    Record a CRM write in the crm_write_log table.

    This function never raises. A failed insert is logged as a warning so
    the sync itself is never disrupted by the audit trail.
    """
    try:
        if payload_summary and len(payload_summary) > 500:
            payload_summary = payload_summary[:497] + '...'

        path = Path(db_path or config.DB_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path))
        try:
            conn.execute("PRAGMA busy_timeout = 3000")
            conn.execute(SCHEMA)
            conn.execute(
                '''INSERT INTO crm_write_log
                   (occurred_at, operation, endpoint, http_method, match_id,
                    relation_id, association_id, payload_summary, success,
                    error_message)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                [
                    datetime.now().isoformat(),
                    operation, endpoint, http_method, match_id,
                    relation_id, association_id, payload_summary,
                    1 if success else 0,
                    error_message,
                ]
            )
            conn.commit()
        finally:
            conn.close()
    except Exception as e:
        logger.warning(f"Failed to log CRM write to audit table: {e}")


def recent_writes(limit: int = 20, db_path: Optional[Union[str, Path]] = None) -> list[dict]:
    """Most recent audit rows, newest first (empty when no log exists yet)."""
    path = Path(db_path or config.DB_PATH)
    if not path.exists():
        return []
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        conn.execute(SCHEMA)
        rows = conn.execute(
            'SELECT * FROM crm_write_log ORDER BY id DESC LIMIT ?', [limit]
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()
