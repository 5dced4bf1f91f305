"""
Per-address request budgets for the authentication routes

Built on the ``limits`` moving-window strategy. Two budgets are kept:
every /auth request counts against the general one, and only failed
password logins count against the login one, so a user who signs in
successfully never uses up their own allowance.
"""
import logging
import math
import time

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from .auth_exceptions import LoginRateLimited, RateLimited

logger = logging.getLogger(__name__)

AUTH_NAMESPACE = "auth"
LOGIN_NAMESPACE = "login"


class AuthRateLimiter:
    def __init__(
        self,
        auth_limit: str = "100 per 15 minutes",
        login_limit: str = "10 per 15 minutes",
        storage_uri: str = "memory://",
        enabled: bool = True,
    ):
        self.auth_limit = parse(auth_limit)
        self.login_limit = parse(login_limit)
        self.storage = storage_from_string(storage_uri)
        self.limiter = MovingWindowRateLimiter(self.storage)
        self.enabled = enabled

    def _retry_after(self, item, namespace: str, client: str) -> int:
        stats = self.limiter.get_window_stats(item, namespace, client)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def hit_auth(self, client: str):
        """Count one /auth request; raises RateLimited once the budget is spent"""
        if not self.enabled:
            return
        if not self.limiter.hit(self.auth_limit, AUTH_NAMESPACE, client):
            logger.warning(f"Auth rate limit exceeded for {client}")
            raise RateLimited(self._retry_after(self.auth_limit, AUTH_NAMESPACE, client))

    def check_login(self, client: str):
        """Refuse a login attempt up front when too many recent ones failed"""
        if not self.enabled:
            return
        if not self.limiter.test(self.login_limit, LOGIN_NAMESPACE, client):
            logger.warning(f"Login rate limit exceeded for {client}")
            raise LoginRateLimited(self._retry_after(self.login_limit, LOGIN_NAMESPACE, client))

    def record_failed_login(self, client: str):
        if self.enabled:
            self.limiter.hit(self.login_limit, LOGIN_NAMESPACE, client)

    def remaining_logins(self, client: str) -> int:
        return self.limiter.get_window_stats(self.login_limit, LOGIN_NAMESPACE, client).remaining

    def reset(self):
        self.storage.reset()
