"""
Scoring plugins.

Each rule module exports a ScoringRule subclass; SCORING_REGISTRY maps the
plugin name to its class and the runner averages the enabled rules.
"""
from typing import Any, List, Mapping, Optional, Sequence

from errors import ConfigurationError
from scoring.contracts import RiskPenalty, ScoringResult, ScoringRule
from scoring.multi_window import MultiWindowConfig, MultiWindowRiskAwareRule
from scoring.runner import combine_results, score_decision
from scoring.single_window import SingleWindowConfig, SingleWindowRule

# Scoring registry - maps rule names to their classes
SCORING_REGISTRY = {
    SingleWindowRule.name: SingleWindowRule,
    MultiWindowRiskAwareRule.name: MultiWindowRiskAwareRule,
}


def build_scoring_rules(
    names: Optional[Sequence[str]] = None,
    configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[ScoringRule]:
    """Instantiate rules by name (all registered ones when `names` is None), highest priority first."""
    configs = configs or {}
    selected = list(names) if names is not None else list(SCORING_REGISTRY)
    out: List[ScoringRule] = []
    for name in selected:
        try:
            cls = SCORING_REGISTRY[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown scoring rule: {name}") from exc
        out.append(cls.from_config(configs.get(name)))
    unknown = set(configs) - set(selected)
    if unknown:
        raise ConfigurationError(f"Configuration given for scoring rules that are not enabled: {sorted(unknown)}")
    out.sort(key=lambda r: -r.priority)
    return out


__all__ = [
    'MultiWindowConfig',
    'MultiWindowRiskAwareRule',
    'RiskPenalty',
    'SCORING_REGISTRY',
    'ScoringResult',
    'ScoringRule',
    'SingleWindowConfig',
    'SingleWindowRule',
    'build_scoring_rules',
    'combine_results',
    'score_decision',
]
