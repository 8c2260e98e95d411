"""
Activity log for transfer and bulk-operation lifecycle events.

Provides:
- One persistent entry per terminal state (completed, paused, failed, ...)
- Recent-activity queries for the caller's history view
- Aggregate statistics and retention cleanup
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ActivityEntry:
    """One recorded lifecycle event."""
    timestamp: datetime
    operation: str
    status: str
    key: Optional[str] = None
    message: Optional[str] = None
    bytes_transferred: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "status": self.status,
            "key": self.key,
            "message": self.message,
            "bytes_transferred": self.bytes_transferred,
        }


class ActivityLog:
    """Activity log backed by SQLite."""

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize the activity database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=10)

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    status TEXT NOT NULL,
                    key TEXT,
                    message TEXT,
                    bytes_transferred INTEGER
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_timestamp ON activity_log (timestamp)")
            conn.commit()
        logger.info(f"Initialized activity log at {self.db_path}")

    def record(
        self,
        operation: str,
        status: str,
        key: Optional[str] = None,
        message: Optional[str] = None,
        bytes_transferred: Optional[int] = None,
    ) -> ActivityEntry:
        """
        Record one lifecycle event.

        Args:
            operation: Operation type (upload, download, delete, delete_folder, ...)
            status: Terminal status (completed, paused, error, failed, ...)
            key: Object key or prefix concerned
            message: Human-readable description
            bytes_transferred: Bytes moved, when known
        """
        entry = ActivityEntry(utcnow(), operation, status, key, message, bytes_transferred)
        with self._lock, self._connect() as conn:
            conn.execute("""
                INSERT INTO activity_log (
                    timestamp, operation, status, key, message, bytes_transferred
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (entry.timestamp.isoformat(), operation, status, key, message, bytes_transferred))
            conn.commit()
        logger.debug(f"Activity: {operation} {status} {key or ''}")
        return entry

    def recent(self, limit: int = 50) -> List[ActivityEntry]:
        """Most recent entries, newest first."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT timestamp, operation, status, key, message, bytes_transferred
                FROM activity_log ORDER BY id DESC LIMIT ?
            """, (limit,)).fetchall()
        return [
            ActivityEntry(
                timestamp=datetime.fromisoformat(row[0]),
                operation=row[1],
                status=row[2],
                key=row[3],
                message=row[4],
                bytes_transferred=row[5],
            )
            for row in rows
        ]

    def statistics(self) -> Dict[str, Any]:
        """Get activity statistics."""
        since = (utcnow() - timedelta(days=1)).isoformat()
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT operation, status, COUNT(*) FROM activity_log GROUP BY operation, status
            """).fetchall()
            total_bytes = conn.execute("""
                SELECT SUM(bytes_transferred) FROM activity_log WHERE status = 'completed'
            """).fetchone()[0] or 0
            recent_failures = conn.execute("""
                SELECT COUNT(*) FROM activity_log
                WHERE status IN ('error', 'failed') AND timestamp > ?
            """, (since,)).fetchone()[0]

        counts: Dict[str, Dict[str, int]] = {}
        for operation, status, count in rows:
            counts.setdefault(operation, {})[status] = count
        return {
            "counts": counts,
            "total_operations": sum(sum(c.values()) for c in counts.values()),
            "total_bytes_transferred": total_bytes,
            "recent_failures_24h": recent_failures,
        }

    def cleanup_old_records(self, days_old: int = 30) -> int:
        """
        Delete old activity records.

        Args:
            days_old: Delete records older than this many days

        Returns:
            Number of records deleted
        """
        cutoff = (utcnow() - timedelta(days=days_old)).isoformat()
        with self._lock, self._connect() as conn:
            deleted = conn.execute("DELETE FROM activity_log WHERE timestamp < ?", (cutoff,)).rowcount
            conn.commit()
        logger.info(f"Cleaned up {deleted} old activity records")
        return deleted
