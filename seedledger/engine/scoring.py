"""
Scoring Rules: signed seeds for one settled prediction.

Correct:   seeds = max(min_gain, round(stake × base × bonus × confidence/100))
           bonus = partial_bonus for "partial", exact_bonus for "works"/"fails"
Incorrect: seeds = -max(min_loss, round(stake × loss_rate))

Pure and deterministic. Confidence is used as given; range checks belong to
the caller.
"""

import math
from dataclasses import dataclass

from seedledger.schemas.enums import Issue, SettlementReason


@dataclass(frozen=True)
class ScoringRules:
    """Tunable scoring constants."""
    base_multiplier: float = 1.5
    exact_bonus: float = 1.5
    partial_bonus: float = 1.2
    loss_rate: float = 0.5
    min_gain: int = 1
    min_loss: int = 1


DEFAULT_RULES = ScoringRules()


@dataclass(frozen=True)
class ScoreOutcome:
    """Result of scoring one prediction against a resolution."""
    seeds_earned: int           # > 0 when correct, < 0 otherwise
    reason: SettlementReason
    correct: bool


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +infinity."""
    return math.floor(value + 0.5)


def rules_from_settings(settings) -> ScoringRules:
    """Build ScoringRules from application settings."""
    return ScoringRules(
        base_multiplier=settings.scoring_base_multiplier,
        exact_bonus=settings.scoring_exact_bonus,
        partial_bonus=settings.scoring_partial_bonus,
        loss_rate=settings.scoring_loss_rate,
        min_gain=settings.scoring_min_gain,
        min_loss=settings.scoring_min_loss,
    )


def settle(
    predicted: Issue | str,
    stake: int,
    resolved: Issue | str,
    confidence: float,
    rules: ScoringRules = DEFAULT_RULES,
) -> ScoreOutcome:
    """Score a prediction of `predicted` with `stake` seeds against the resolution."""
    if Issue(predicted) == Issue(resolved):
        bonus = rules.partial_bonus if Issue(resolved) == Issue.PARTIAL else rules.exact_bonus
        multiplier = rules.base_multiplier * bonus
        multiplier *= confidence / 100
        seeds = max(rules.min_gain, round_half_up(stake * multiplier))
        return ScoreOutcome(seeds, SettlementReason.ANTICIPATION_WON, True)

    loss = max(rules.min_loss, round_half_up(stake * rules.loss_rate))
    return ScoreOutcome(-loss, SettlementReason.ANTICIPATION_LOST, False)
