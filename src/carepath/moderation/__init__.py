"""Moderation - classifier gateway, policy engine, flag ledger and review queue."""

from carepath.moderation.gateway import ClassifierGateway
from carepath.moderation.ledger import DRAFT_CONTENT_ID, FlagLedger, UnresolvedFlags
from carepath.moderation.pipeline import ModerationPipeline, SubmissionOutcome
from carepath.moderation.policy import decide
from carepath.moderation.queue import PendingQueue

__all__ = [
    "DRAFT_CONTENT_ID",
    "ClassifierGateway",
    "FlagLedger",
    "ModerationPipeline",
    "PendingQueue",
    "SubmissionOutcome",
    "UnresolvedFlags",
    "decide",
]
