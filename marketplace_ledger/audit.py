"""
Audit Log Module

Hash-chained, append-only record of every mutating ledger operation.
Each entry stores the actor and before/after snapshots and is written in the
same transaction as the change it describes.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .access import ActorDirectory
from .errors import ValidationError
from .pagination import Page, normalize_paging, paginate
from .storage import StorageInterface, StorageRecord, parse_datetime, serialize_value


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Entries are stamped in UTC; naive bounds are read as UTC"""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class AuditAction(Enum):
    """Kinds of audited operations"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    POST = "POST"
    LOCK = "LOCK"
    REVERSE = "REVERSE"
    CANCEL = "CANCEL"
    CLOSE = "CLOSE"
    REBUILD = "REBUILD"


@dataclass
class AuditLogEntry(StorageRecord):
    """
    Immutable audit entry with hash chaining for tamper detection
    """
    sequence: int
    action: AuditAction
    entity_name: str   # Table-like name: chart_of_accounts, vouchers, ...
    entity_id: str
    actor: Optional[str]
    previous_hash: str
    current_hash: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None

    def __post_init__(self):
        if self.before is not None:
            self.before = serialize_value(self.before)
        if self.after is not None:
            self.after = serialize_value(self.after)

    def calculate_hash(self) -> str:
        """
        SHA-256 over every field except current_hash
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'action': self.action.value,
            'entity_name': self.entity_name,
            'entity_id': self.entity_id,
            'actor': self.actor,
            'previous_hash': self.previous_hash,
            'before': self.before,
            'after': self.after,
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            sequence=data['sequence'],
            action=AuditAction(data['action']),
            entity_name=data['entity_name'],
            entity_id=data['entity_id'],
            actor=data.get('actor'),
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            before=data.get('before'),
            after=data.get('after'),
            actor_name=data.get('actor_name'),
            actor_role=data.get('actor_role'),
        )


class AuditLog:
    """
    Append-only audit log shared by every ledger component
    """

    HEAD_ID = "head"

    def __init__(
        self,
        storage: StorageInterface,
        actor_directory: Optional[ActorDirectory] = None,
        table_name: str = "audit_log",
        default_limit: int = 50,
        max_limit: int = 500
    ):
        self.storage = storage
        self.actor_directory = actor_directory
        self.table_name = table_name
        self.head_table = f"{table_name}_head"
        self.default_limit = default_limit
        self.max_limit = max_limit

    def record(
        self,
        action: AuditAction,
        entity_name: str,
        entity_id: str,
        actor: Optional[str],
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> AuditLogEntry:
        """
        Append one entry to the chain.

        Joins the caller's transaction when there is one, so the entry
        disappears together with the change if that transaction rolls back.
        """
        actor_name = actor_role = None
        if self.actor_directory and actor:
            profile = self.actor_directory.describe(actor)
            if profile:
                actor_name, actor_role = profile.display_name, profile.role

        with self.storage.atomic():
            head = self.storage.load(self.head_table, self.HEAD_ID) or {}
            now = datetime.now(timezone.utc)
            entry = AuditLogEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self.storage.next_sequence(self.table_name),
                action=action,
                entity_name=entity_name,
                entity_id=entity_id,
                actor=actor,
                previous_hash=head.get('hash', ""),
                current_hash="",
                before=before,
                after=after,
                actor_name=actor_name,
                actor_role=actor_role,
            )
            entry.current_hash = entry.calculate_hash()
            self.storage.save(self.table_name, entry.id, entry.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                'sequence': entry.sequence,
                'hash': entry.current_hash,
            })
        return entry

    def get_entry(self, entry_id: str) -> Optional[AuditLogEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return AuditLogEntry.from_dict(data)
        return None

    def query(
        self,
        entity_name: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Page[AuditLogEntry]:
        """
        Filter the log, newest first.

        Args:
            entity_name: Only entries about this kind of record
            entity_id: Only entries about this record
            action: Only this action
            actor: Only entries written on behalf of this actor
            start: Inclusive lower bound on the entry timestamp
            end: Inclusive upper bound on the entry timestamp
            page: 1-based page number
            limit: Page size
        """
        page, limit = normalize_paging(page, limit, self.default_limit, self.max_limit)
        start = as_utc(start)
        end = as_utc(end)
        if start and end and start > end:
            raise ValidationError("start must not be after end")

        filters: Dict[str, Any] = {}
        if entity_name:
            filters['entity_name'] = entity_name
        if entity_id:
            filters['entity_id'] = entity_id
        if action:
            filters['action'] = action.value
        if actor:
            filters['actor'] = actor

        entries = [AuditLogEntry.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start:
            entries = [e for e in entries if e.created_at >= start]
        if end:
            entries = [e for e in entries if e.created_at <= end]
        entries.sort(key=lambda e: e.sequence, reverse=True)
        return paginate(entries, page, limit)

    def count_entries(self) -> int:
        return self.storage.count(self.table_name)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_entries': 0,
            'hash_errors': [],
            'chain_breaks': [],
        }

        entries = [AuditLogEntry.from_dict(d) for d in self.storage.load_all(self.table_name)]
        entries.sort(key=lambda e: e.sequence)
        result['total_entries'] = len(entries)

        previous_hash = ""
        for position, entry in enumerate(entries):
            if not entry.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'entry_id': entry.id,
                    'position': position,
                    'expected_hash': entry.calculate_hash(),
                    'actual_hash': entry.current_hash
                })
            if entry.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'entry_id': entry.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': entry.previous_hash
                })
            previous_hash = entry.current_hash

        return result
