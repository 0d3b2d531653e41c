# backend/leadintel/services/batch_processor.py
"""
Bounded fan-out for per-item work

Items are processed in windows: every item in a window runs concurrently,
and the next window starts only after the whole window settles.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class BatchProcessor:
    """
    Process items in fixed-size concurrent windows
    """
    
    def __init__(self, window_size: int = 5):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        
        self.windows_processed = 0
        self.items_processed = 0
        self.items_failed = 0
    
    async def process_in_windows(
        self,
        items: List[Any],
        process_func: Callable[[Any], Awaitable[Any]],
        on_window_complete: Optional[Callable] = None
    ) -> List[Any]:
        """
        Run process_func over items, window by window.
        
        Returns one entry per item in input order: the function's result, or
        the exception it raised. Failures never abort sibling items.
        """
        results: List[Any] = []
        total = len(items)
        total_windows = (total + self.window_size - 1) // self.window_size
        
        for start in range(0, total, self.window_size):
            window = items[start:start + self.window_size]
            window_num = start // self.window_size + 1
            
            logger.debug(
                f"📦 Processing window {window_num}/{total_windows} ({len(window)} items)"
            )
            
            window_results = await asyncio.gather(
                *(process_func(item) for item in window),
                return_exceptions=True
            )
            
            for item, result in zip(window, window_results):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    self.items_failed += 1
                    logger.error(f"❌ Error processing item {item!r}: {result}")
                else:
                    self.items_processed += 1
            
            results.extend(window_results)
            self.windows_processed += 1
            
            if on_window_complete:
                await on_window_complete(window_num, total_windows, window_results)
        
        return results
    
    def get_stats(self) -> Dict:
        return {
            "windows_processed": self.windows_processed,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "window_size": self.window_size,
        }
