"""
Base scorer interface for ICP filter dimensions.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseScorer(ABC):
    """Abstract base for all dimension scorers."""
    
    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: Dimension configuration (targets, ranges, etc.)
        """
        self.config = config
    
    @abstractmethod
    def calculate_score(self, value: Any) -> Optional[float]:
        """
        Calculate score for given value.
        
        Args:
            value: The entity's value for this dimension
            
        Returns:
            Score between 0.0 and 1.0, or None when the entity has no data
            for the dimension (the dimension is then skipped)
        """
        pass
    
    def get_explanation(self, value: Any, score: float) -> str:
        """
        Return human-readable explanation of score.
        """
        return f"Score: {score:.2f}"
    
    @staticmethod
    def is_missing(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str) and not value.strip():
            return True
        if isinstance(value, (list, tuple, set)) and len(value) == 0:
            return True
        return False
