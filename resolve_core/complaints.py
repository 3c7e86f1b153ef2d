"""
Complaint Store Module

The Complaint entity and its persistence. The workflow engine is the main
writer of status, priority, current stage, assignee and escalation fields;
everything here is plain record handling.
"""

import uuid
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord, utc_now, parse_datetime, format_datetime
from .errors import NotFoundError


class ComplaintStatus(Enum):
    """Complaint status values as shown to users"""
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class ComplaintPriority(Enum):
    """Priority ladder, lowest first"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"

    def bumped(self) -> 'ComplaintPriority':
        """One step up the ladder; Urgent stays Urgent"""
        ladder = list(ComplaintPriority)
        index = ladder.index(self)
        return ladder[min(index + 1, len(ladder) - 1)]


OPEN_STATUSES = (ComplaintStatus.OPEN, ComplaintStatus.IN_PROGRESS)

INITIAL_STAGE_NAME = "Initial Review"


@dataclass
class Complaint(StorageRecord):
    """A complaint filed by a user against a department"""
    organization_id: str
    complainant_id: str
    complaint_type_id: str
    department_id: str
    title: str
    description: str
    status: ComplaintStatus = ComplaintStatus.OPEN
    priority: ComplaintPriority = ComplaintPriority.MEDIUM
    current_stage: Optional[str] = None
    assigned_to: Optional[str] = None
    escalated_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def set_status(self, status: ComplaintStatus, now: Optional[datetime] = None) -> ComplaintStatus:
        """Set status, stamping resolved/closed timestamps; returns the previous status"""
        now = now or utc_now()
        previous = self.status
        self.status = status
        if status == ComplaintStatus.RESOLVED:
            self.resolved_at = now
        elif status == ComplaintStatus.CLOSED:
            self.closed_at = now
        return previous

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'organization_id': self.organization_id,
            'complainant_id': self.complainant_id,
            'complaint_type_id': self.complaint_type_id,
            'department_id': self.department_id,
            'title': self.title,
            'description': self.description,
            'status': self.status.value,
            'priority': self.priority.value,
            'current_stage': self.current_stage,
            'assigned_to': self.assigned_to,
            'escalated_at': format_datetime(self.escalated_at),
            'escalation_reason': self.escalation_reason,
            'resolved_at': format_datetime(self.resolved_at),
            'closed_at': format_datetime(self.closed_at),
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Complaint':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            organization_id=data['organization_id'],
            complainant_id=data['complainant_id'],
            complaint_type_id=data['complaint_type_id'],
            department_id=data['department_id'],
            title=data['title'],
            description=data['description'],
            status=ComplaintStatus(data['status']),
            priority=ComplaintPriority(data['priority']),
            current_stage=data.get('current_stage'),
            assigned_to=data.get('assigned_to'),
            escalated_at=parse_datetime(data.get('escalated_at')),
            escalation_reason=data.get('escalation_reason'),
            resolved_at=parse_datetime(data.get('resolved_at')),
            closed_at=parse_datetime(data.get('closed_at')),
        )


@dataclass
class ComplaintComment(StorageRecord):
    """A note left on a complaint by its complainant or department staff"""
    complaint_id: str
    author_id: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'complaint_id': self.complaint_id,
            'author_id': self.author_id,
            'text': self.text,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplaintComment':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            complaint_id=data['complaint_id'],
            author_id=data['author_id'],
            text=data['text'],
        )


class ComplaintStore:
    """Persistence for complaints"""

    TABLE = "complaints"
    COMMENTS_TABLE = "complaint_comments"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def create(self, organization_id: str, complainant_id: str, complaint_type_id: str,
               department_id: str, title: str, description: str,
               priority: ComplaintPriority = ComplaintPriority.MEDIUM) -> Complaint:
        """Persist a new Open complaint"""
        now = utc_now()
        complaint = Complaint(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            complainant_id=complainant_id,
            complaint_type_id=complaint_type_id,
            department_id=department_id,
            title=title,
            description=description,
            priority=priority,
            current_stage=INITIAL_STAGE_NAME,
        )
        self.storage.save(self.TABLE, complaint.id, complaint.to_dict())
        return complaint

    def get(self, complaint_id: str) -> Optional[Complaint]:
        data = self.storage.load(self.TABLE, complaint_id)
        return Complaint.from_dict(data) if data else None

    def require(self, complaint_id: str, organization_id: Optional[str] = None) -> Complaint:
        """Complaint by id, scoped to an organization when given"""
        complaint = self.get(complaint_id)
        if not complaint or (organization_id and complaint.organization_id != organization_id):
            raise NotFoundError("Complaint not found")
        return complaint

    def save(self, complaint: Complaint) -> None:
        complaint.touch()
        self.storage.save(self.TABLE, complaint.id, complaint.to_dict())

    def count_open_assigned(self, user_id: str) -> int:
        """Number of Open or In Progress complaints assigned to a user"""
        assigned = self.storage.find(self.TABLE, {'assigned_to': user_id})
        open_values = {status.value for status in OPEN_STATUSES}
        return sum(1 for data in assigned if data['status'] in open_values)

    def list_for_organization(self, organization_id: str,
                              status: Optional[ComplaintStatus] = None) -> List[Complaint]:
        filters: Dict[str, Any] = {'organization_id': organization_id}
        if status:
            filters['status'] = status.value
        complaints = [Complaint.from_dict(data) for data in self.storage.find(self.TABLE, filters)]
        return sorted(complaints, key=lambda c: c.created_at, reverse=True)

    def add_comment(self, complaint_id: str, author_id: str, text: str) -> ComplaintComment:
        now = utc_now()
        comment = ComplaintComment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            complaint_id=complaint_id,
            author_id=author_id,
            text=text,
        )
        self.storage.save(self.COMMENTS_TABLE, comment.id, comment.to_dict())
        return comment

    def comments_for(self, complaint_id: str) -> List[ComplaintComment]:
        """Comments on a complaint, oldest first"""
        comments = [
            ComplaintComment.from_dict(data)
            for data in self.storage.find(self.COMMENTS_TABLE, {'complaint_id': complaint_id})
        ]
        return sorted(comments, key=lambda c: c.created_at)
