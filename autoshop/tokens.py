import secrets
import string
from typing import Container, Optional

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_LENGTH = 8
MAX_ATTEMPTS = 100

_system_random = secrets.SystemRandom()


def generate_reference_token(
    existing: Container[str],
    *,
    length: int = TOKEN_LENGTH,
    max_attempts: int = MAX_ATTEMPTS,
    rng: Optional[object] = None,
) -> str:
    """Return a short uppercase alphanumeric token for a payment memo.

    Candidates already in ``existing`` are redrawn up to ``max_attempts``
    times; after that the last candidate is returned even if it collides.
    """
    rng = rng or _system_random
    token = ""
    for _ in range(max(1, max_attempts)):
        token = "".join(rng.choice(TOKEN_ALPHABET) for _ in range(length))
        if token not in existing:
            return token
    return token
