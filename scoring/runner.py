"""
Scoring runner.

This is the stable entry point the game service calls: every enabled rule
scores the decision, failures are logged and left out, and the surviving
results are averaged into one ScoringResult.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from game.types import GameDecision
from market.types import PriceSeries
from scoring.contracts import RiskPenalty, ScoringResult, ScoringRule

logger = logging.getLogger(__name__)


def combine_results(results: Sequence[ScoringResult], failed: Sequence[str] = ()) -> ScoringResult:
    """Arithmetic mean of score/pnl/penalties; breakdown keys are prefixed by rule name."""
    if not results:
        reason = "all_rules_failed" if failed else "no_rules"
        return ScoringResult(score=0.0, pnl=0.0, metadata={"rule": "runner", "reason": reason, "failed_rules": list(failed)})

    n = float(len(results))
    breakdown: Dict[str, float] = {}
    rules: List[str] = []
    for r in results:
        rule = str(r.metadata.get("rule", "rule"))
        rules.append(rule)
        for key, value in r.breakdown.items():
            breakdown[f"{rule}.{key}"] = float(value)

    penalty = RiskPenalty(
        mdd_penalty=sum(r.risk_penalty.mdd_penalty for r in results) / n,
        volatility_penalty=sum(r.risk_penalty.volatility_penalty for r in results) / n,
        fee_penalty=sum(r.risk_penalty.fee_penalty for r in results) / n,
    )
    reasons = {rule: r.metadata["reason"] for rule, r in zip(rules, results) if "reason" in r.metadata}
    metadata = {"rules": rules, "failed_rules": list(failed)}
    if reasons:
        metadata["neutral_reasons"] = reasons
    return ScoringResult(
        score=sum(r.score for r in results) / n,
        pnl=sum(r.pnl for r in results) / n,
        breakdown=breakdown,
        risk_penalty=penalty,
        metadata=metadata,
    )


def score_decision(
    rules: Sequence[ScoringRule],
    decision: GameDecision,
    historical: PriceSeries,
    future: PriceSeries,
) -> ScoringResult:
    results: List[ScoringResult] = []
    failed: List[str] = []
    for rule in rules:
        try:
            results.append(rule.score(decision, historical, future))
        except Exception:
            logger.warning(
                "Scoring rule %s failed for decision %s (session %s); excluding it",
                rule.name, getattr(decision, "id", None), getattr(decision, "session_id", None),
                exc_info=True,
            )
            failed.append(rule.name)
    return combine_results(results, failed)

