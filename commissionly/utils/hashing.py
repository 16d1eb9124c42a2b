"""
Secret hashing utilities using bcrypt.
"""

from passlib.context import CryptContext

# Configure bcrypt for API key secrets
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
)


def hash_secret(secret: str) -> str:
    """
    Hash a plain-text secret using bcrypt.

    Args:
        secret: Plain-text secret

    Returns:
        Hashed secret string
    """
    return pwd_context.hash(secret)


def verify_secret(plain_secret: str, hashed_secret: str) -> bool:
    """
    Verify a plain-text secret against a hash.

    Args:
        plain_secret: Plain-text secret to verify
        hashed_secret: Stored hash

    Returns:
        True if the secret matches, False otherwise
    """
    return pwd_context.verify(plain_secret, hashed_secret)
