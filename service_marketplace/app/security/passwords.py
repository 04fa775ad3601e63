"""
Partner password hashing.
"""

import base64
import hashlib
import hmac
import os
import re


PASSWORD_PATTERN = re.compile(r"^(?=.*\d)(?=.*[a-z])(?=.*[A-Z])(?=.*[\W]).{8,}$")


def is_strong_password(password: str) -> bool:
    """At least 8 characters with a digit, a lower case, an upper case and a special character."""
    return bool(PASSWORD_PATTERN.match(password))


class PasswordHasher:
    """PBKDF2-SHA256 hashes encoded as ``pbkdf2_sha256$<iterations>$<salt>$<hash>``."""

    ALGORITHM = "pbkdf2_sha256"

    def __init__(self, iterations: int = 100000):
        self.iterations = iterations

    def hash(self, password: str) -> str:
        salt = base64.b64encode(os.urandom(16)).decode("ascii")
        digest = self._digest(password, salt, self.iterations)
        return f"{self.ALGORITHM}${self.iterations}${salt}${digest}"

    def verify(self, password: str, encoded: str) -> bool:
        try:
            algorithm, iterations, salt, expected = encoded.split("$", 3)
        except ValueError:
            return False
        if algorithm != self.ALGORITHM:
            return False
        return hmac.compare_digest(self._digest(password, salt, int(iterations)), expected)

    @staticmethod
    def _digest(password: str, salt: str, iterations: int) -> str:
        raw = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
        return base64.b64encode(raw).decode("ascii")
