"""
Set-overlap scoring for list fields such as tech stack.
"""
from typing import Any, Optional
from .base import BaseScorer


class OverlapScorer(BaseScorer):
    """
    Fraction of configured targets present in the value list
    (substring match, case-insensitive).
    
    Config format:
    {
        "targets": ["Salesforce", "HubSpot"]
    }
    """
    
    def matches(self, value: Any) -> list:
        have = [str(v).lower() for v in value or []]
        return [
            t for t in self.config.get("targets", [])
            if any(t.lower() in item for item in have)
        ]
    
    def calculate_score(self, value: Any) -> Optional[float]:
        if self.is_missing(value):
            return None
        targets = self.config.get("targets", [])
        if not targets:
            return None
        return len(self.matches(value)) / len(targets)
    
    def get_explanation(self, value: Any, score: float) -> str:
        targets = self.config.get("targets", [])
        return f"Matched {len(self.matches(value))}/{len(targets)}"
