"""
Security utilities: password hashing, login rate limiting, code generation
"""
import re
import secrets
import threading
from datetime import datetime, timedelta

import bcrypt


class PasswordManager:
    """bcrypt password hashing and strength checks"""

    MIN_LENGTH = 8

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        if not password or not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError:
            return False

    @classmethod
    def is_strong_password(cls, password: str):
        """Return (is_strong, message)"""
        if not password or len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"
        if not re.search(r'[A-Z]', password):
            return False, "Password must contain at least one uppercase letter"
        if not re.search(r'[a-z]', password):
            return False, "Password must contain at least one lowercase letter"
        if not re.search(r'\d', password):
            return False, "Password must contain at least one digit"
        return True, "Password is strong"


class RateLimiter:
    """In-memory failed-attempt counter keyed by client identifier"""

    def __init__(self, max_attempts: int = 5, window_minutes: int = 15):
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self._attempts = {}
        self._lock = threading.Lock()

    def _recent(self, identifier):
        cutoff = datetime.utcnow() - self.window
        attempts = [t for t in self._attempts.get(identifier, []) if t > cutoff]
        self._attempts[identifier] = attempts
        return attempts

    def is_allowed(self, identifier: str, max_attempts: int = None) -> bool:
        limit = max_attempts or self.max_attempts
        with self._lock:
            return len(self._recent(identifier)) < limit

    def record_attempt(self, identifier: str):
        with self._lock:
            self._recent(identifier).append(datetime.utcnow())

    def reset_attempts(self, identifier: str):
        with self._lock:
            self._attempts.pop(identifier, None)

    def clear(self):
        with self._lock:
            self._attempts.clear()


class TokenManager:
    """Numeric verification codes"""

    @staticmethod
    def generate_numeric_code(length: int = 6) -> str:
        return ''.join(secrets.choice('0123456789') for _ in range(length))

    @staticmethod
    def codes_match(expected: str, provided: str) -> bool:
        if not expected or not provided:
            return False
        return secrets.compare_digest(str(expected), str(provided))


login_rate_limiter = RateLimiter()
