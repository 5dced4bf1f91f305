import asyncio
import bcrypt
import logging
import re
import secrets
from typing import List, Optional

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt ignores or rejects anything longer
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password_strength(password: str) -> List[str]:
    """Return every policy rule the password breaks (empty when it passes)"""
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character")
    return errors


class PasswordCodec:
    """bcrypt hashing with a configurable work factor"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        # Checked against when the account does not exist, so that path costs a full bcrypt run too
        self.decoy_hash = self.hash_password(secrets.token_urlsafe(16))

    def hash_password(self, password: str) -> str:
        """Hash password using bcrypt"""
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
        return hashed.decode('utf-8')

    def verify_password(self, password: str, hashed: Optional[str]) -> bool:
        """Verify password against hash"""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError as e:
            # Corrupt hash or over-long input
            logger.warning(f"Password verification rejected input: {e}")
            return False

    async def hash_password_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash_password, password)

    async def verify_password_async(self, password: str, hashed: Optional[str]) -> bool:
        return await asyncio.to_thread(self.verify_password, password, hashed)
