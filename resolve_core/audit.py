"""
Audit Trail Module

Hash-chained, append-only log of complaint and workflow activity. It doubles
as the complaint activity log: every creation, status change, stage move and
escalation of a complaint is recorded here with the acting user.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord, utc_now


class AuditEventType(Enum):
    """Types of audit events"""
    # Directory events
    ORGANIZATION_REGISTERED = "organization_registered"
    DEPARTMENT_CREATED = "department_created"
    DEPARTMENT_UPDATED = "department_updated"
    DEPARTMENT_DELETED = "department_deleted"
    USER_CREATED = "user_created"
    USER_ACTIVATED = "user_activated"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_LOGIN = "user_login"
    LOGIN_FAILED = "login_failed"
    COMPLAINT_TYPE_CREATED = "complaint_type_created"
    COMPLAINT_TYPE_UPDATED = "complaint_type_updated"
    COMPLAINT_TYPE_DELETED = "complaint_type_deleted"

    # Complaint events
    COMPLAINT_CREATED = "complaint_created"
    STATUS_UPDATED = "status_updated"
    COMPLAINT_ESCALATED = "complaint_escalated"
    COMPLAINT_ASSIGNED = "complaint_assigned"
    COMMENT_ADDED = "comment_added"

    # Workflow events
    WORKFLOW_DEFINITION_CREATED = "workflow_definition_created"
    WORKFLOW_DEFINITION_UPDATED = "workflow_definition_updated"
    WORKFLOW_DEFINITION_DELETED = "workflow_definition_deleted"
    WORKFLOW_INSTANCE_CREATED = "workflow_instance_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_ESCALATED = "workflow_escalated"
    WORKFLOW_CANCELED = "workflow_canceled"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _json_safe(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata,
            'user_id': self.user_id,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the hash of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            ordered = sorted(events, key=lambda x: x.get('created_at', ''))
            self._last_hash = ordered[-1].get('current_hash')

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited (complaint, workflow_instance, ...)
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action, None for the system

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = utc_now()
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash or "",
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash

            return event

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        event_types: Optional[List[AuditEventType]] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Events for one entity, oldest first, optionally filtered by type"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        if event_types:
            events = [e for e in events if e.event_type in event_types]

        events.sort(key=lambda x: x.created_at)

        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        all_events_data = self.storage.load_all(self.table_name)
        if not all_events_data:
            return result

        events = [AuditEvent.from_dict(data) for data in all_events_data]
        events.sort(key=lambda x: x.created_at)
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': i})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': i})
            previous_hash = event.current_hash

        return result
