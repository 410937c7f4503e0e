"""Password hashing and policy."""
import bcrypt

from cardroom.errors import ValidationError

MIN_PASSWORD_LENGTH = 8
BCRYPT_ROUNDS = 12


def check_password_policy(password: str) -> None:
    """Reject passwords that are too short to register with."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password using bcrypt.
    
    Args:
        password: Plain text password.
        rounds: bcrypt cost factor; tests lower it for speed.
        
    Returns:
        Hashed password string.
    """
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against its stored bcrypt hash."""
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
