"""
Range-based scoring for numeric fields.
"""
from typing import Any, Optional
from .base import BaseScorer


class RangeScorer(BaseScorer):
    """
    Score 1.0 inside [min, max] (either bound optional), else a fixed
    out-of-range score.
    
    Config format:
    {
        "min": 50,
        "max": 500,
        "out_of_range_score": 0.0
    }
    """
    
    def calculate_score(self, value: Any) -> Optional[float]:
        if self.is_missing(value):
            return None
        
        try:
            value = float(value)
        except (ValueError, TypeError):
            return None
        
        # Zero means "unknown" in most provider payloads
        if value <= 0:
            return None
        
        low = self.config.get("min")
        high = self.config.get("max")
        in_range = (low is None or value >= low) and (high is None or value <= high)
        
        return 1.0 if in_range else self.config.get("out_of_range_score", 0.0)
    
    def get_explanation(self, value: Any, score: float) -> str:
        low = self.config.get("min")
        high = self.config.get("max")
        if score == 1.0:
            return f"{value} in range [{low}, {high}]"
        return f"{value} outside range [{low}, {high}]"
