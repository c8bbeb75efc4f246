from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from authgate.core.config import settings
from authgate.core.errors import ValidationError

ph = PasswordHasher(time_cost=3, memory_cost=65536, parallelism=2)

# verified against when no account matches, so both paths cost the same
DUMMY_HASH = ph.hash("authgate-no-such-account")


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def enforce_policy(password: str) -> None:
    if len(password) < settings.password_min_length:
        raise ValidationError(
            "password", f"must be at least {settings.password_min_length} characters"
        )
    if len(password) > settings.password_max_length:
        raise ValidationError(
            "password", f"must be at most {settings.password_max_length} characters"
        )
