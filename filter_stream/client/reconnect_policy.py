"""
MODULE OVERVIEW:
The retry schedule for abnormal closures.

WHAT IS HAPPENING HERE:
A pure function of the attempt number. The schedule is linear (base * attempt), so with the
defaults the five retries wait 2s, 4s, 6s, 8s and 10s. There is no jitter: only one client
subscription exists per manager, so there is no herd to spread out.
"""
from typing import Optional


class ReconnectPolicy:
    def __init__(self, base_delay_ms: int = 2000, max_attempts: int = 5):
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts

    def decide(self, attempt: int) -> Optional[float]:
        """Delay in seconds before retry number `attempt` (1-based), or None to stop."""
        if attempt < 1:
            raise ValueError(f"attempt numbering starts at 1, got {attempt}")
        if attempt > self.max_attempts:
            return None
        return self.base_delay_ms * attempt / 1000.0
