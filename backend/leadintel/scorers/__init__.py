"""
Scorer factory and registry.
"""
from .base import BaseScorer
from .range_scorer import RangeScorer
from .match_scorer import MatchScorer
from .overlap_scorer import OverlapScorer

# Registry of available scorers
SCORER_REGISTRY = {
    "range": RangeScorer,
    "match": MatchScorer,
    "overlap": OverlapScorer,
}


def get_scorer(scorer_type: str, config: dict) -> BaseScorer:
    """
    Factory function to create appropriate scorer.
    
    Raises:
        ValueError: If scorer_type not found in registry
    """
    scorer_class = SCORER_REGISTRY.get(scorer_type)
    
    if not scorer_class:
        raise ValueError(
            f"Unknown scorer type: {scorer_type}. "
            f"Available: {list(SCORER_REGISTRY.keys())}"
        )
    
    return scorer_class(config)
