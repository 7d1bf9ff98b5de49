"""Password gate and signed session cookies (Fernet). Disabled entirely when no password is configured."""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from infra_dashboard.security.exceptions import AuthenticationError, SessionError

logger = logging.getLogger(__name__)

SESSION_SALT = b"infra_dashboard_session_v1"
SESSION_MARKER = b"session:v1"
KDF_ITERATIONS = 480000


def _derive_key(secret: str, password: str, iterations: int = KDF_ITERATIONS) -> bytes:
    """Key depends on the password too, so rotating it invalidates every issued cookie."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=SESSION_SALT + hashlib.sha256(password.encode("utf-8")).digest(),
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class SessionManager:
    """
    Issues and validates session tokens for the single shared dashboard password.
    No global state; constructed once from settings.
    """

    def __init__(
        self,
        password: Optional[str],
        secret: str,
        max_age_sec: int,
        kdf_iterations: int = KDF_ITERATIONS,
    ) -> None:
        self._password = password or None
        self._max_age = max_age_sec
        self._fernet: Optional[Fernet] = None
        if self._password:
            self._fernet = Fernet(_derive_key(secret, self._password, kdf_iterations))
        else:
            logger.warning("dashboard_password_not_set", extra={"auth": "disabled"})

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    @property
    def max_age_sec(self) -> int:
        return self._max_age

    def login(self, candidate: str) -> Optional[str]:
        """Check the password and return a fresh token; None when auth is disabled."""
        if not self.enabled:
            return None
        if not hmac.compare_digest(candidate.encode("utf-8"), self._password.encode("utf-8")):
            raise AuthenticationError("Invalid password")
        return self.issue()

    def issue(self) -> str:
        if self._fernet is None:
            raise SessionError("Sessions are disabled when no password is configured")
        return self._fernet.encrypt(SESSION_MARKER).decode("ascii")

    def validate(self, token: Optional[str]) -> None:
        """Raise AuthenticationError unless the token is genuine and younger than max age."""
        if self._fernet is None:
            return
        if not token:
            raise AuthenticationError("Authentication required")
        try:
            payload = self._fernet.decrypt(token.encode("ascii"), ttl=self._max_age)
        except (InvalidToken, UnicodeEncodeError):
            raise AuthenticationError("Session expired or invalid") from None
        if payload != SESSION_MARKER:
            raise AuthenticationError("Session expired or invalid")

    def is_valid(self, token: Optional[str]) -> bool:
        try:
            self.validate(token)
        except AuthenticationError:
            return False
        return True
