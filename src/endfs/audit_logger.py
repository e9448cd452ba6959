"""
src/endfs/audit_logger.py - Content Access Auditing

Structured JSON audit trail for the content operations of a mount:
- One JSON object per line, each with a SHA-256 checksum for tamper detection
- Asynchronous writes through a background queue worker
- Rotating log files; HIGH/CRITICAL events are copied to security.log

Only virtual paths, sizes and offsets are recorded, never passphrases or
file content.
"""

import hashlib
import json
import logging
import logging.handlers
import os
import queue
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of events to log."""
    MOUNT = "MOUNT"
    UNMOUNT = "UNMOUNT"
    FILE_READ = "FILE_READ"
    FILE_WRITE = "FILE_WRITE"
    FILE_CREATE = "FILE_CREATE"
    FILE_TRUNCATE = "FILE_TRUNCATE"
    TRANSFORM_FAILURE = "TRANSFORM_FAILURE"


class Severity(Enum):
    """Event severity levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass
class AuditEvent:
    """Structured audit event."""
    event_id: str
    timestamp: str
    event_type: str
    severity: str
    resource_path: Optional[str]
    action: str
    status: str
    details: Dict[str, Any]
    checksum: Optional[str] = None


_OPERATION_EVENTS = {
    'READ': EventType.FILE_READ,
    'WRITE': EventType.FILE_WRITE,
    'CREATE': EventType.FILE_CREATE,
    'TRUNCATE': EventType.FILE_TRUNCATE,
}


class AuditLogger:
    """
    Audit logger for one mount.

    Events are queued by the calling FUSE worker and written by a single
    background thread, so logging never blocks on disk I/O.
    """

    def __init__(self, log_dir: Path,
                 max_log_size: int = 100 * 1024 * 1024,  # 100MB
                 backup_count: int = 10):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for log files
            max_log_size: Maximum size per log file
            backup_count: Number of rotated files to keep
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.max_log_size = max_log_size
        self.backup_count = backup_count

        self._setup_loggers()

        self._worker_lock = threading.Lock()
        self._worker_pid: Optional[int] = None
        self._log_queue: "queue.Queue[Optional[AuditEvent]]" = queue.Queue()
        self._start_worker()

    def _setup_loggers(self):
        """Setup rotating file loggers, one pair per log directory."""
        suffix = hashlib.sha256(str(self.log_dir.resolve()).encode()).hexdigest()[:12]

        self.audit_logger = logging.getLogger(f'endfs.audit.{suffix}')
        self.audit_logger.setLevel(logging.INFO)
        self.audit_logger.propagate = False
        self._audit_handler = self._rotating_handler('audit.log')
        self.audit_logger.addHandler(self._audit_handler)

        self.security_logger = logging.getLogger(f'endfs.security.{suffix}')
        self.security_logger.setLevel(logging.WARNING)
        self.security_logger.propagate = False
        self._security_handler = self._rotating_handler('security.log')
        self.security_logger.addHandler(self._security_handler)

    def _rotating_handler(self, filename: str) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count
        )
        handler.setFormatter(logging.Formatter('%(message)s'))
        return handler

    def _start_worker(self):
        """
        Start the writer thread for the current process.

        Threads do not survive fork(), and FUSE forks when it daemonizes.
        A forked child gets a fresh queue holding the events its parent had
        not written yet, and a thread of its own to write them.
        """
        pending = list(self._log_queue.queue) if self._worker_pid is not None else []
        self._log_queue = queue.Queue()
        for event in pending:
            if event is not None:
                self._log_queue.put(event)

        self._log_thread = threading.Thread(
            target=self._log_worker, args=(self._log_queue,), daemon=True
        )
        self._log_thread.start()
        self._worker_pid = os.getpid()

    def _ensure_worker(self) -> "queue.Queue[Optional[AuditEvent]]":
        if self._worker_pid != os.getpid():
            with self._worker_lock:
                if self._worker_pid != os.getpid():
                    logger.debug("Restarting audit worker in process %d", os.getpid())
                    self._start_worker()
        return self._log_queue

    def _enqueue(self, event: AuditEvent):
        self._ensure_worker().put(event)

    def _log_worker(self, log_queue: "queue.Queue[Optional[AuditEvent]]"):
        """Background worker for async logging."""
        while True:
            event = log_queue.get()
            try:
                if event is None:  # Shutdown signal
                    break
                self._write_log_entry(event)
            except Exception:
                logger.exception("Audit logging error")
            finally:
                log_queue.task_done()

    def _create_event(self, event_type: EventType, action: str, status: str,
                      severity: Severity = Severity.LOW,
                      resource_path: Optional[str] = None,
                      details: Optional[Dict[str, Any]] = None) -> AuditEvent:
        """Create structured audit event."""
        event = AuditEvent(
            event_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type.value,
            severity=severity.value,
            resource_path=resource_path,
            action=action,
            status=status,
            details=details or {}
        )

        # Calculate checksum for tamper detection
        event_json = json.dumps(asdict(event), sort_keys=True)
        event.checksum = hashlib.sha256(event_json.encode()).hexdigest()

        return event

    def _write_log_entry(self, event: AuditEvent):
        """Write log entry to appropriate logger."""
        event_json = json.dumps(asdict(event), sort_keys=True)

        self.audit_logger.info(event_json)

        if event.severity in (Severity.HIGH.value, Severity.CRITICAL.value):
            self.security_logger.warning(event_json)

    def log_file_operation(self, operation: str, path: str, status: str,
                           details: Optional[Dict[str, Any]] = None):
        """
        Log a content operation.

        Args:
            operation: READ, WRITE, CREATE or TRUNCATE
            path: Virtual path of the file
            status: SUCCESS or ERROR
            details: Optional additional details
        """
        event = self._create_event(
            event_type=_OPERATION_EVENTS[operation],
            action=operation,
            status=status,
            severity=Severity.LOW if status == "SUCCESS" else Severity.MEDIUM,
            resource_path=path,
            details=details
        )
        self._enqueue(event)

    def log_transform_failure(self, operation: str, path: str, description: str):
        """Log a file whose content failed to decrypt."""
        event = self._create_event(
            event_type=EventType.TRANSFORM_FAILURE,
            action=operation,
            status="DETECTED",
            severity=Severity.HIGH,
            resource_path=path,
            details={'description': description}
        )
        self._enqueue(event)

    def log_system_event(self, event_type: EventType, description: str,
                         details: Optional[Dict[str, Any]] = None):
        """
        Log mount lifecycle event.

        Args:
            event_type: EventType.MOUNT or EventType.UNMOUNT
            description: Event description
            details: Optional additional details
        """
        event_details = dict(details or {})
        event_details['description'] = description

        event = self._create_event(
            event_type=event_type,
            action=event_type.value,
            status="COMPLETED",
            details=event_details
        )
        self._enqueue(event)

    def flush(self):
        """Block until every queued event has been written."""
        self._ensure_worker().join()
        self._audit_handler.flush()
        self._security_handler.flush()

    def get_audit_trail(self, file_path: str, limit: int = 100) -> List[Dict]:
        """
        Get audit trail for a specific file.

        Args:
            file_path: Virtual path of the file
            limit: Maximum number of entries to return

        Returns:
            Most recent audit events for the file
        """
        events = [event for event in self._read_events('audit.log')
                  if event.get('resource_path') == file_path]
        return events[-limit:]

    def get_security_events(self, limit: int = 100) -> List[Dict]:
        """Get the most recent HIGH/CRITICAL events."""
        return list(self._read_events('security.log'))[-limit:]

    def _read_events(self, filename: str):
        try:
            with open(self.log_dir / filename, 'r') as f:
                for line in f:
                    try:
                        yield json.loads(line.strip())
                    except json.JSONDecodeError:
                        continue
        except FileNotFoundError:
            return

    def verify_log_integrity(self) -> Dict:
        """
        Verify integrity of the audit log.

        Returns:
            Dictionary with integrity verification results
        """
        results = {
            'verified': True,
            'total_events': 0,
            'corrupted_events': 0,
            'missing_checksums': 0
        }

        try:
            with open(self.log_dir / 'audit.log', 'r') as f:
                for line in f:
                    try:
                        event = json.loads(line.strip())
                    except json.JSONDecodeError:
                        results['corrupted_events'] += 1
                        results['verified'] = False
                        continue

                    results['total_events'] += 1
                    stored_checksum = event.pop('checksum', None)
                    if not stored_checksum:
                        results['missing_checksums'] += 1
                        continue

                    # Checksum was computed with checksum=None
                    event['checksum'] = None
                    calculated_checksum = hashlib.sha256(
                        json.dumps(event, sort_keys=True).encode()
                    ).hexdigest()
                    if stored_checksum != calculated_checksum:
                        results['corrupted_events'] += 1
                        results['verified'] = False
        except FileNotFoundError:
            pass

        return results

    def shutdown(self):
        """Drain the queue, stop the worker and close the log files."""
        log_queue = self._ensure_worker()
        log_queue.join()
        log_queue.put(None)
        self._log_thread.join(timeout=5)

        for log, handler in ((self.audit_logger, self._audit_handler),
                             (self.security_logger, self._security_handler)):
            log.removeHandler(handler)
            handler.close()
