"""Triage - chat rooms, case notes and the per-room assistant."""

from carepath.triage.assistant import TriageSession
from carepath.triage.history import ConversationHistory
from carepath.triage.manager import TriageManager
from carepath.triage.notes import CaseNotes, format_assessment_note
from carepath.triage.rooms import ChatRoomService

__all__ = [
    "CaseNotes",
    "ChatRoomService",
    "ConversationHistory",
    "TriageManager",
    "TriageSession",
    "format_assessment_note",
]
