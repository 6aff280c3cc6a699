"""
Match activity log and notes.

Activities are appended to a Match's JSON activity field. A note-added
activity is mirrored into the Notes field under the same id, so editing
or deleting the note touches both lists in one update.
"""

import logging
from typing import Optional

from .aggregation import AggregationCache
from .exceptions import DataValidationError
from .models import (
    ACTIVITY_TYPES,
    NOTE_ADDED,
    Match,
    MatchActivity,
    MatchNote,
    activity_fields,
)
from .record_store import RecordStoreAdapter

logger = logging.getLogger(__name__)


class ActivityService:
    """Append activities to Matches and manage their notes."""

    def __init__(self, store: RecordStoreAdapter, aggregation: Optional[AggregationCache] = None):
        self.store = store
        self.aggregation = aggregation

    def _load(self, match_id: str) -> Match:
        match = self.store.get_match(match_id)
        if match is None:
            raise DataValidationError(f"Match not found: {match_id}")
        return match

    def _save(self, match_id: str, fields: dict) -> Match:
        updated = self.store.update_match(match_id, fields)
        if self.aggregation is not None:
            self.aggregation.invalidate()
        return updated

    def add_activity(self, match_id: str, type: str, details: str = '',
                     metadata: Optional[dict] = None, user: Optional[str] = None) -> MatchActivity:
        """
        Append an activity to a Match.

        Args:
            match_id: Match record id
            type: One of ACTIVITY_TYPES
            details: Free text; required for note-added
            metadata: Extra structured data (emailSubject, offerAmount, ...)
            user: Who did it

        Returns:
            The stored activity with its generated id and timestamp
        """
        if type not in ACTIVITY_TYPES:
            raise DataValidationError(f"Unknown activity type: {type!r}")
        if type == NOTE_ADDED and not details.strip():
            raise DataValidationError('Note text is required')

        match = self._load(match_id)
        if type == NOTE_ADDED:
            metadata = dict(metadata or {}, note=details)
        activity = MatchActivity.create(type, details=details, metadata=metadata, user=user)

        notes = None
        if type == NOTE_ADDED:
            notes = match.note_entries + [MatchNote.from_activity(activity)]

        self._save(match_id, activity_fields(match.activities + [activity], notes))
        logger.info(f"Match {match_id}: added {type} activity {activity.id}")
        return activity

    def add_note(self, match_id: str, text: str, user: Optional[str] = None) -> MatchActivity:
        return self.add_activity(match_id, NOTE_ADDED, details=text, user=user)

    def edit_note(self, match_id: str, note_id: str, text: str) -> Match:
        """Replace a note's text in both the notes list and its activity."""
        if not text.strip():
            raise DataValidationError('Note text is required')

        match = self._load(match_id)
        if not any(n.id == note_id for n in match.note_entries):
            raise DataValidationError(f"Note {note_id} not found on match {match_id}")

        for note in match.note_entries:
            if note.id == note_id:
                note.text = text
        for activity in match.activities:
            if activity.id == note_id and activity.type == NOTE_ADDED:
                activity.details = text
                activity.metadata = dict(activity.metadata, note=text)

        updated = self._save(match_id, activity_fields(match.activities, match.note_entries))
        logger.info(f"Match {match_id}: edited note {note_id}")
        return updated

    def delete_note(self, match_id: str, note_id: str) -> Match:
        """Remove a note and its note-added activity."""
        match = self._load(match_id)
        notes = [n for n in match.note_entries if n.id != note_id]
        if len(notes) == len(match.note_entries):
            raise DataValidationError(f"Note {note_id} not found on match {match_id}")

        activities = [a for a in match.activities if a.id != note_id]
        updated = self._save(match_id, activity_fields(activities, notes))
        logger.info(f"Match {match_id}: deleted note {note_id}")
        return updated
