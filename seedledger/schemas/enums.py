"""Categorical values shared by models, engine and API schemas."""

from enum import StrEnum


class Issue(StrEnum):
    """Outcome of a decision, as predicted or as resolved."""

    WORKS = "works"
    PARTIAL = "partial"
    FAILS = "fails"


class PredictionStatus(StrEnum):
    # pending → resolved, never back
    PENDING = "pending"
    RESOLVED = "resolved"


class PredictionResult(StrEnum):
    WON = "won"
    LOST = "lost"


class TransactionType(StrEnum):
    EARNED = "earned"
    LOST = "lost"


class SettlementReason(StrEnum):
    ANTICIPATION_WON = "anticipation_won"
    ANTICIPATION_LOST = "anticipation_lost"


RELATED_TYPE_ANTICIPATION = "anticipation"
