"""
Service coordinator to manage service dependencies and initialization
"""
import logging
from datetime import timedelta
from typing import Optional

from ..auth.gate import RequestGate
from ..core.clock import Clock, utcnow
from ..core.config import Settings, settings
from .auth_service import AuthenticationService
from .background_tasks import BackgroundTaskManager
from .credential_store import CredentialStore
from .database_manager import DatabaseManager
from .lockout_policy import LockoutPolicy
from .oauth_client import GoogleOAuthClient, OAuthStateStore
from .password_codec import PasswordCodec
from .rate_limiter import AuthRateLimiter
from .session_ledger import SessionLedger
from .tenant_store import SharedTenantStore, TenantStore
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)

TENANT_STRATEGIES = ("per_tenant", "shared")


def create_tenant_store(config: Settings, credential_store: CredentialStore) -> TenantStore:
    """Pick the storage strategy named by TENANT_STRATEGY"""
    if config.TENANT_STRATEGY == "per_tenant":
        return DatabaseManager(credential_store, config.TENANT_DATA_DIR)
    if config.TENANT_STRATEGY == "shared":
        return SharedTenantStore(credential_store, config.SHARED_DATA_DB_PATH)
    raise ValueError(
        f"Unknown TENANT_STRATEGY {config.TENANT_STRATEGY!r}, expected one of {TENANT_STRATEGIES}"
    )


class ServiceCoordinator:
    """Builds every service from settings and owns their lifecycle"""

    def __init__(self, config: Settings = settings, clock: Clock = utcnow):
        self.settings = config

        self.password_codec = PasswordCodec(rounds=config.BCRYPT_ROUNDS)
        self.lockout_policy = LockoutPolicy(
            max_attempts=config.MAX_LOGIN_ATTEMPTS,
            lockout_duration=timedelta(minutes=config.LOCKOUT_DURATION_MINUTES),
        )
        self.credential_store = CredentialStore(
            config.CREDENTIAL_DB_PATH, self.password_codec, self.lockout_policy, clock=clock
        )
        self.token_codec = TokenCodec(
            secret=config.JWT_SECRET,
            refresh_secret=config.JWT_REFRESH_SECRET,
            algorithm=config.JWT_ALGORITHM,
            issuer=config.JWT_ISSUER,
            audience=config.JWT_AUDIENCE,
            access_ttl=timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS),
            refresh_ttl=timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS),
        )
        self.session_ledger = SessionLedger(self.credential_store, self.token_codec, clock=clock)
        self.tenant_store = create_tenant_store(config, self.credential_store)
        self.auth_service = AuthenticationService(
            credential_store=self.credential_store,
            session_ledger=self.session_ledger,
            tenant_store=self.tenant_store,
            token_codec=self.token_codec,
            password_codec=self.password_codec,
            clock=clock,
        )
        self.request_gate = RequestGate(
            self.token_codec,
            self.credential_store,
            self.session_ledger,
            check_session=config.SESSION_CHECK_ON_REQUEST,
        )
        self.oauth_client: Optional[GoogleOAuthClient] = None
        if config.google_oauth_enabled:
            self.oauth_client = GoogleOAuthClient(
                config.GOOGLE_CLIENT_ID,
                config.GOOGLE_CLIENT_SECRET,
                config.GOOGLE_REDIRECT_URI,
                state_store=OAuthStateStore(config.OAUTH_STATE_TTL_SECONDS),
            )
        self.rate_limiter = AuthRateLimiter(
            auth_limit=config.AUTH_RATE_LIMIT,
            login_limit=config.LOGIN_RATE_LIMIT,
            storage_uri=config.RATE_LIMIT_STORAGE_URI,
            enabled=config.RATE_LIMIT_ENABLED,
        )
        self.background_tasks = BackgroundTaskManager(
            self.session_ledger,
            sweep_interval_seconds=config.SESSION_SWEEP_INTERVAL_MINUTES * 60,
        )
        self.initialized = False

    async def initialize(self) -> bool:
        """Initialize all services with proper dependencies"""
        if self.initialized:
            logger.info("Services already initialized")
            return True

        logger.info("Starting service initialization...")
        await self.credential_store.initialize()
        await self.tenant_store.initialize()
        logger.info(f"Tenant storage strategy: {self.tenant_store.strategy}")

        if self.settings.SESSION_SWEEP_ENABLED:
            await self.background_tasks.start()

        self.initialized = True
        logger.info("All services initialized successfully")
        return True

    async def shutdown(self):
        """Shutdown all services"""
        logger.info("Shutting down services...")
        await self.background_tasks.stop()
        await self.tenant_store.close()
        self.initialized = False


# Global service coordinator instance
_service_coordinator: Optional[ServiceCoordinator] = None


def get_service_coordinator() -> ServiceCoordinator:
    """Get the global service coordinator instance"""
    global _service_coordinator
    if _service_coordinator is None:
        _service_coordinator = ServiceCoordinator()
    return _service_coordinator


def reset_service_coordinator():
    """Forget the global instance so the next call rebuilds it from current settings"""
    global _service_coordinator
    _service_coordinator = None


def get_auth_service() -> AuthenticationService:
    return get_service_coordinator().auth_service
