"""
Brute-force lockout state machine.

The state is embedded in the user row (``failed_login_attempts`` and
``locked_until``). A lock is soft: once ``locked_until`` passes the account
is open again without any unlock step, but the failure counter only resets
on the next successful login, so one more failure re-locks immediately.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class LockState(str, Enum):
    OPEN = "open"
    LOCKED = "locked"


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)

    def state(self, locked_until: Optional[datetime], now: datetime) -> LockState:
        # Exactly at locked_until the account is open again
        if locked_until is not None and now < locked_until:
            return LockState.LOCKED
        return LockState.OPEN

    def is_locked(self, locked_until: Optional[datetime], now: datetime) -> bool:
        return self.state(locked_until, now) is LockState.LOCKED

    def lock_expiry_for(self, attempts: int, now: datetime) -> Optional[datetime]:
        """Lock expiry to set after a failure brings the counter to ``attempts``"""
        if attempts >= self.max_attempts:
            return now + self.lockout_duration
        return None

    def remaining_attempts(self, attempts: int) -> int:
        return max(self.max_attempts - attempts, 0)
