"""
Substring match scoring for categorical fields.
"""
from typing import Any, Callable, Optional
from .base import BaseScorer


class MatchScorer(BaseScorer):
    """
    Score 1.0 when the value contains any target, else 0.0.
    
    Config format:
    {
        "targets": ["SaaS", "Fintech"],
        "exact": false,
        "normalize": <optional callable applied to both sides>
    }
    """
    
    def _normalize(self, text: str) -> str:
        normalize: Optional[Callable[[str], str]] = self.config.get("normalize")
        text = str(text).strip().lower()
        return normalize(text) if normalize else text
    
    def calculate_score(self, value: Any) -> Optional[float]:
        if self.is_missing(value):
            return None
        
        value_str = self._normalize(value)
        targets = [self._normalize(t) for t in self.config.get("targets", [])]
        
        if self.config.get("exact", False):
            return 1.0 if value_str in targets else 0.0
        return 1.0 if any(t in value_str for t in targets) else 0.0
    
    def get_explanation(self, value: Any, score: float) -> str:
        if score == 1.0:
            return f"Match: '{value}'"
        return f"No match: '{value}' not in {self.config.get('targets', [])}"
