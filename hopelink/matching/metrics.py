"""In-process metrics for the matching engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from hopelink.matching.models import MatchCandidate

logger = logging.getLogger(__name__)


class FactorContribution(BaseModel):
    """Tracks how one factor scores across candidates."""

    factor: str
    total_invocations: int = 0
    total_score: float = 0.0
    max_score: float = 0.0
    min_score: float = 1.0
    avg_score: float = 0.0
    high_scores: int = 0  # Count of scores >= 0.8

    def update(self, score: float) -> None:
        """Update factor statistics with a new score."""
        self.total_invocations += 1
        self.total_score += score
        self.max_score = max(self.max_score, score)
        self.min_score = min(self.min_score, score)
        self.avg_score = self.total_score / self.total_invocations

        if score >= 0.8:
            self.high_scores += 1


class ScoreDistribution(BaseModel):
    """Distribution of final candidate scores."""

    excellent: int = Field(default=0, description="Score >= 0.85")
    strong: int = Field(default=0, description="0.75 <= score < 0.85")
    fair: int = Field(default=0, description="0.50 <= score < 0.75")
    weak: int = Field(default=0, description="Score < 0.50")

    def add_score(self, score: float) -> None:
        if score >= 0.85:
            self.excellent += 1
        elif score >= 0.75:
            self.strong += 1
        elif score >= 0.50:
            self.fair += 1
        else:
            self.weak += 1

    def get_summary(self) -> dict[str, Any]:
        total = self.excellent + self.strong + self.fair + self.weak
        if total == 0:
            return {}

        return {
            "excellent_pct": self.excellent / total,
            "strong_pct": self.strong / total,
            "fair_pct": self.fair / total,
            "weak_pct": self.weak / total,
            "counts": {
                "excellent": self.excellent,
                "strong": self.strong,
                "fair": self.fair,
                "weak": self.weak,
            },
        }


class MatchingMetrics(BaseModel):
    """Counters for ranking runs, claims and conflicts."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    total_runs: int = 0
    total_candidates_scored: int = 0
    total_empty_runs: int = 0
    avg_candidates_per_run: float = 0.0

    total_auto_matchable: int = 0
    total_auto_claimable: int = 0

    matches_created: int = 0
    idempotent_replays: int = 0
    stale_conflicts: int = 0
    recommendation_refreshes: int = 0
    coalesced_refreshes: int = 0

    score_distribution: ScoreDistribution = Field(default_factory=ScoreDistribution)
    factor_contributions: dict[str, FactorContribution] = Field(default_factory=dict)

    def add_ranking(self, candidates: list[MatchCandidate]) -> None:
        """
        Record one ranking run.

        Args:
            candidates: Every candidate scored in the run
        """
        self.total_runs += 1
        self.total_candidates_scored += len(candidates)
        if not candidates:
            self.total_empty_runs += 1
        self.avg_candidates_per_run = self.total_candidates_scored / self.total_runs

        for candidate in candidates:
            self.score_distribution.add_score(candidate.score)
            self.total_auto_matchable += int(candidate.auto_match_eligible)
            self.total_auto_claimable += int(candidate.auto_claim_eligible)
            for fs in candidate.factor_scores:
                if fs.factor not in self.factor_contributions:
                    self.factor_contributions[fs.factor] = FactorContribution(factor=fs.factor)
                self.factor_contributions[fs.factor].update(fs.score)

        self.last_updated = datetime.now(timezone.utc)

    def record(self, counter: str) -> None:
        """Increment one of the event counters."""
        setattr(self, counter, getattr(self, counter) + 1)
        self.last_updated = datetime.now(timezone.utc)

    def get_summary(self) -> dict[str, Any]:
        """
        Get metrics summary.

        Returns:
            Dictionary of all metrics
        """
        return {
            "timing": {
                "started_at": self.started_at.isoformat(),
                "last_updated": self.last_updated.isoformat(),
                "duration_seconds": (self.last_updated - self.started_at).total_seconds(),
            },
            "ranking": {
                "runs": self.total_runs,
                "empty_runs": self.total_empty_runs,
                "candidates_scored": self.total_candidates_scored,
                "avg_candidates_per_run": self.avg_candidates_per_run,
                "auto_matchable": self.total_auto_matchable,
                "auto_claimable": self.total_auto_claimable,
            },
            "claims": {
                "created": self.matches_created,
                "idempotent_replays": self.idempotent_replays,
                "stale_conflicts": self.stale_conflicts,
            },
            "recommendations": {
                "refreshes": self.recommendation_refreshes,
                "coalesced": self.coalesced_refreshes,
            },
            "scores": self.score_distribution.get_summary(),
            "factors": {
                name: {
                    "avg_score": contrib.avg_score,
                    "max_score": contrib.max_score,
                    "min_score": contrib.min_score,
                    "high_scores": contrib.high_scores,
                    "invocations": contrib.total_invocations,
                }
                for name, contrib in self.factor_contributions.items()
            },
        }


# Global metrics instance
_global_metrics = MatchingMetrics()


def get_metrics() -> MatchingMetrics:
    """Get global metrics instance."""
    return _global_metrics


def reset_metrics() -> None:
    """Reset global metrics."""
    global _global_metrics
    _global_metrics = MatchingMetrics()
    logger.info("Matching metrics reset")
