"""Data models for the match sync module.

Record store field names appear only in this module: every record is
translated with ``from_api`` on the way in and ``to_fields`` on the way out.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Collection(Enum):
    """Record store tables."""
    BUYERS = 'Buyers'
    PROPERTIES = 'Properties'
    MATCHES = 'Property-Buyer Matches'


# =========================================================================
# PIPELINE STAGES
# =========================================================================

class Stage(Enum):
    """Match pipeline stages, in pipeline order."""
    SENT_TO_BUYER = 'Sent to Buyer'
    BUYER_RESPONDED = 'Buyer Responded'
    SHOWING_SCHEDULED = 'Showing Scheduled'
    PROPERTY_VIEWED = 'Property Viewed'
    UNDERWRITING = 'Underwriting'
    CONTRACTS = 'Contracts'
    QUALIFIED = 'Qualified'
    CLOSED_WON = 'Closed Deal / Won'
    NOT_INTERESTED = 'Not Interested'  # Exit state

    @classmethod
    def parse(cls, value: Any) -> Optional['Stage']:
        """Parse a stage name (case-insensitive). Empty means no stage yet."""
        if value is None or value == '':
            return None
        if isinstance(value, Stage):
            return value
        text = str(value).strip().lower()
        for stage in cls:
            if stage.value.lower() == text or stage.name.lower() == text:
                return stage
        raise ValueError(f"Unknown stage: {value!r}")

    @property
    def is_exit(self) -> bool:
        return self is Stage.NOT_INTERESTED

    @property
    def order(self) -> int:
        if self.is_exit:
            return 99
        return PIPELINE_STAGES.index(self) + 1


PIPELINE_STAGES = [s for s in Stage if s is not Stage.NOT_INTERESTED]


def next_stage(current: Optional[Stage]) -> Optional[Stage]:
    """Default "next" stage offered by the UI; None at the end or after exit."""
    if current is None:
        return PIPELINE_STAGES[0]
    if current.is_exit or current is PIPELINE_STAGES[-1]:
        return None
    return PIPELINE_STAGES[PIPELINE_STAGES.index(current) + 1]


def is_forward_transition(from_stage: Optional[Stage], to_stage: Stage) -> bool:
    """Whether a transition moves forward in the pipeline (informational only)."""
    if to_stage.is_exit:
        return True
    if from_stage is None:
        return True
    if from_stage.is_exit:
        return False
    return to_stage.order >= from_stage.order


# =========================================================================
# FIELD HELPERS
# =========================================================================

def _first_link(value: Any) -> str:
    """First id of a linked-record field (lists of record ids)."""
    if isinstance(value, list):
        return str(value[0]) if value else ''
    return str(value) if value else ''


def _number(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    if isinstance(value, list):
        value = value[0] if value else None
        if value is None:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, list):
        return ', '.join(str(v) for v in value)
    return str(value)


def _zip_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(z).strip() for z in value if str(z).strip()]
    return [z.strip() for z in str(value).split(',') if z.strip()]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =========================================================================
# RECORD STORE ENTITIES
# =========================================================================

@dataclass
class Buyer:
    """Buyer record (created by CRM sync, read-only here)."""
    record_id: str
    contact_id: str = ''
    first_name: str = ''
    last_name: str = ''
    email: str = ''
    monthly_income: Optional[float] = None
    down_payment: Optional[float] = None
    desired_beds: Optional[float] = None
    desired_baths: Optional[float] = None
    city: str = ''
    location: str = ''
    preferred_zip_codes: list[str] = field(default_factory=list)
    buyer_type: str = ''

    @classmethod
    def from_api(cls, data: dict) -> 'Buyer':
        """Create from a record store record."""
        f = data.get('fields', {})
        return cls(
            record_id=data['id'],
            contact_id=_text(f.get('Contact ID')),
            first_name=_text(f.get('First Name')),
            last_name=_text(f.get('Last Name')),
            email=_text(f.get('Email')),
            monthly_income=_number(f.get('Monthly Income')),
            down_payment=_number(f.get('Downpayment')),
            desired_beds=_number(f.get('No. of Bedrooms')),
            desired_baths=_number(f.get('No. of Bath')),
            city=_text(f.get('City')),
            location=_text(f.get('Location')),
            preferred_zip_codes=_zip_list(f.get('Preferred Zip Codes')),
            buyer_type=_text(f.get('Buyer Type')),
        )

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            'recordId': self.record_id,
            'contactId': self.contact_id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'email': self.email,
            'monthlyIncome': self.monthly_income,
            'downPayment': self.down_payment,
            'desiredBeds': self.desired_beds,
            'desiredBaths': self.desired_baths,
            'city': self.city,
            'location': self.location,
            'preferredZipCodes': list(self.preferred_zip_codes),
            'buyerType': self.buyer_type,
        }


BUYER_FIELDS = {
    'contact_id': 'Contact ID',
    'first_name': 'First Name',
    'last_name': 'Last Name',
    'email': 'Email',
    'city': 'City',
    'location': 'Location',
}


@dataclass
class Property:
    """Property record."""
    record_id: str
    property_code: str = ''
    opportunity_id: str = ''
    address: str = ''
    city: str = ''
    state: str = ''
    zip_code: str = ''
    price: Optional[float] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    sqft: Optional[float] = None
    stage: str = ''

    @classmethod
    def from_api(cls, data: dict) -> 'Property':
        """Create from a record store record."""
        f = data.get('fields', {})
        price = _number(f.get('Property Total Price'))
        if price is None:
            price = _number(f.get('Price'))
        return cls(
            record_id=data['id'],
            property_code=_text(f.get('Property Code')),
            opportunity_id=_text(f.get('Opportunity ID')),
            address=_text(f.get('Address')),
            city=_text(f.get('City')),
            state=_text(f.get('State')),
            zip_code=_text(f.get('Zip Code') or f.get('ZIP Code')),
            price=price,
            beds=_number(f.get('Beds')),
            baths=_number(f.get('Baths')),
            sqft=_number(f.get('Sqft')),
            stage=_text(f.get('Stage')),
        )

    @property
    def display_code(self) -> str:
        """Property code, falling back to the CRM opportunity id."""
        return self.property_code or self.opportunity_id

    def to_dict(self) -> dict:
        return {
            'recordId': self.record_id,
            'propertyCode': self.property_code,
            'opportunityId': self.opportunity_id,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'zipCode': self.zip_code,
            'price': self.price,
            'beds': self.beds,
            'baths': self.baths,
            'sqft': self.sqft,
            'stage': self.stage,
        }


PROPERTY_FIELDS = {
    'property_code': 'Property Code',
    'opportunity_id': 'Opportunity ID',
    'address': 'Address',
    'city': 'City',
    'state': 'State',
}


ACTIVITY_TYPES = (
    'stage-change',
    'email-sent',
    'showing-scheduled',
    'showing-completed',
    'note-added',
    'offer-submitted',
    'match-created',
)

NOTE_ADDED = 'note-added'


def _activity_id() -> str:
    return f"act_{uuid.uuid4().hex[:12]}"


@dataclass
class MatchActivity:
    """Entry in a match's append-only activity log."""
    id: str
    type: str
    timestamp: str
    details: str = ''
    metadata: dict = field(default_factory=dict)
    user: Optional[str] = None

    @classmethod
    def create(cls, type: str, details: str = '', metadata: Optional[dict] = None,
               user: Optional[str] = None) -> 'MatchActivity':
        return cls(
            id=_activity_id(),
            type=type,
            timestamp=utc_now_iso(),
            details=details,
            metadata=dict(metadata or {}),
            user=user,
        )

    @classmethod
    def stage_change(cls, from_stage: Optional[Stage], to_stage: Stage) -> 'MatchActivity':
        from_name = from_stage.value if from_stage else ''
        return cls.create(
            'stage-change',
            details=f'Stage changed from "{from_name}" to "{to_stage.value}"',
            metadata={'fromStage': from_name or None, 'toStage': to_stage.value},
        )

    @classmethod
    def from_api(cls, data: dict) -> 'MatchActivity':
        return cls(
            id=str(data.get('id', '')),
            type=str(data.get('type', '')),
            timestamp=str(data.get('timestamp', '')),
            details=str(data.get('details', '') or ''),
            metadata=dict(data.get('metadata') or {}),
            user=data.get('user') or None,
        )

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'type': self.type,
            'timestamp': self.timestamp,
            'details': self.details,
            'metadata': self.metadata,
        }
        if self.user:
            data['user'] = self.user
        return data


@dataclass
class MatchNote:
    """Free-text note; shares its id with the note-added activity."""
    id: str
    text: str
    timestamp: str
    user: Optional[str] = None

    @classmethod
    def from_activity(cls, activity: MatchActivity) -> 'MatchNote':
        return cls(id=activity.id, text=activity.details, timestamp=activity.timestamp, user=activity.user)

    @classmethod
    def from_api(cls, data: dict) -> 'MatchNote':
        return cls(
            id=str(data.get('id', '')),
            text=str(data.get('text', '') or ''),
            timestamp=str(data.get('timestamp', '')),
            user=data.get('user') or None,
        )

    def to_dict(self) -> dict:
        data = {'id': self.id, 'text': self.text, 'timestamp': self.timestamp}
        if self.user:
            data['user'] = self.user
        return data


def _parse_json_list(raw: Any, record_id: str, label: str) -> list[dict]:
    if not raw:
        return []
    try:
        items = json.loads(raw) if isinstance(raw, str) else raw
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Unreadable {label} on match {record_id}, treating as empty")
        return []
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _parse_stage(raw: Any, record_id: str) -> Optional[Stage]:
    try:
        return Stage.parse(raw)
    except ValueError:
        logger.warning(f"Unknown stage {raw!r} on match {record_id}, treating as unset")
        return None


@dataclass
class Match:
    """Scored buyer/property pair tracked through the pipeline."""
    id: str
    buyer_record_id: str
    property_record_id: str
    score: float = 0.0
    notes: str = ''
    status: str = 'Active'
    distance: Optional[float] = None
    is_priority: bool = False
    stage: Optional[Stage] = None
    relation_id: Optional[str] = None
    activities: list[MatchActivity] = field(default_factory=list)
    note_entries: list[MatchNote] = field(default_factory=list)
    created_time: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> 'Match':
        """Create from a record store record."""
        f = data.get('fields', {})
        record_id = data['id']
        activities = _parse_json_list(f.get('Activities'), record_id, 'activity log')
        notes = _parse_json_list(f.get('Notes'), record_id, 'notes')
        return cls(
            id=record_id,
            buyer_record_id=_first_link(f.get('Contact ID')),
            property_record_id=_first_link(f.get('Property Code')),
            score=_number(f.get('Match Score')) or 0.0,
            notes=_text(f.get('Match Notes')),
            status=_text(f.get('Match Status')) or 'Active',
            distance=_number(f.get('Distance')),
            is_priority=bool(f.get('Is Priority')),
            stage=_parse_stage(f.get('Match Stage'), record_id),
            relation_id=_text(f.get('GHL Relation ID')) or None,
            activities=[MatchActivity.from_api(a) for a in activities],
            note_entries=[MatchNote.from_api(n) for n in notes],
            created_time=data.get('createdTime'),
        )

    @property
    def pair(self) -> tuple[str, str]:
        """Natural key: (buyer record id, property record id)."""
        return (self.buyer_record_id, self.property_record_id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'buyerRecordId': self.buyer_record_id,
            'propertyRecordId': self.property_record_id,
            'score': self.score,
            'notes': self.notes,
            'status': self.status,
            'distance': self.distance,
            'isPriority': self.is_priority,
            'stage': self.stage.value if self.stage else None,
            'relationId': self.relation_id,
            'activities': [a.to_dict() for a in self.activities],
            'noteEntries': [n.to_dict() for n in self.note_entries],
        }


MATCH_FIELDS = {
    'buyer_record_id': 'Contact ID',
    'property_record_id': 'Property Code',
    'score': 'Match Score',
    'stage': 'Match Stage',
    'relation_id': 'GHL Relation ID',
    'activities': 'Activities',
    'notes': 'Notes',
}


def match_score_fields(score: float, notes: str, is_priority: bool,
                       distance: Optional[float] = None) -> dict:
    """Fields written when a match is (re)scored."""
    fields = {
        'Match Score': score,
        'Match Notes': notes,
        'Match Status': 'Active',
        'Is Priority': is_priority,
    }
    if distance is not None:
        fields['Distance'] = distance
    return fields


def new_match_fields(buyer_record_id: str, property_record_id: str, score: float,
                     notes: str, is_priority: bool, distance: Optional[float] = None) -> dict:
    """Fields for a brand-new match (linked records, no stage yet)."""
    fields = match_score_fields(score, notes, is_priority, distance)
    fields['Contact ID'] = [buyer_record_id]
    fields['Property Code'] = [property_record_id]
    return fields


def stage_fields(stage: Stage, activities: list[MatchActivity]) -> dict:
    return {
        'Match Stage': stage.value,
        'Activities': json.dumps([a.to_dict() for a in activities]),
    }


def activity_fields(activities: list[MatchActivity], notes: Optional[list[MatchNote]] = None) -> dict:
    """Activity log, plus the notes list when it changed too."""
    fields = {'Activities': json.dumps([a.to_dict() for a in activities])}
    if notes is not None:
        fields['Notes'] = json.dumps([n.to_dict() for n in notes])
    return fields


def relation_fields(relation_id: Optional[str]) -> dict:
    # Empty string clears the field on the provider side
    return {'GHL Relation ID': relation_id or ''}


@dataclass
class RecordPage:
    """One page of raw records plus the cursor for the next page."""
    records: list[dict]
    next_cursor: Optional[str] = None


# =========================================================================
# CRM ENTITIES
# =========================================================================

@dataclass
class CrmAssociation:
    """CRM association definition (one per pipeline stage)."""
    id: str
    key: str = ''
    name: str = ''
    first_object_key: str = ''
    second_object_key: str = ''

    @classmethod
    def from_api(cls, data: dict) -> 'CrmAssociation':
        return cls(
            id=data['id'],
            key=data.get('key', '') or '',
            name=(data.get('name') or data.get('firstObjectLabel') or '') or '',
            first_object_key=data.get('firstObjectKey', '') or '',
            second_object_key=data.get('secondObjectKey', '') or '',
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'key': self.key,
            'name': self.name,
            'firstObjectKey': self.first_object_key,
            'secondObjectKey': self.second_object_key,
        }


@dataclass
class CrmRelation:
    """Edge between two CRM records under one association."""
    id: str
    association_id: str = ''
    first_record_id: str = ''
    second_record_id: str = ''

    @classmethod
    def from_api(cls, data: dict) -> 'CrmRelation':
        return cls(
            id=data['id'],
            association_id=data.get('associationId', '') or '',
            first_record_id=data.get('firstRecordId', '') or '',
            second_record_id=data.get('secondRecordId', '') or '',
        )


@dataclass
class CrmRecord:
    """CRM custom-object record (e.g. a property)."""
    id: str
    object_key: str = ''
    properties: dict = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict) -> 'CrmRecord':
        return cls(
            id=data['id'],
            object_key=data.get('objectKey', '') or '',
            properties=dict(data.get('properties') or {}),
        )
