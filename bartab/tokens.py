"""Join tokens: short, typable codes that link a QR/URL to a pending session.

Tokens are independent of database ids and drawn from ``secrets`` so they
cannot be guessed from neighbouring sessions.
"""

import secrets
from typing import Callable

GROUP_DIGITS = 4
DEFAULT_ATTEMPTS = 20


def generate_join_token() -> str:
    """Two 4-digit groups, e.g. "0471-8718" (10^8 possibilities)."""
    bound = 10 ** GROUP_DIGITS
    a = secrets.randbelow(bound)
    b = secrets.randbelow(bound)
    return f"{a:0{GROUP_DIGITS}d}-{b:0{GROUP_DIGITS}d}"


def is_well_formed(token: str) -> bool:
    parts = token.split("-")
    return len(parts) == 2 and all(len(p) == GROUP_DIGITS and p.isdigit() for p in parts)


def new_unique_token(is_taken: Callable[[str], bool], attempts: int = DEFAULT_ATTEMPTS) -> str:
    """Generate a token not used by any pending or active session."""
    for _ in range(attempts):
        token = generate_join_token()
        if not is_taken(token):
            return token
    raise RuntimeError("Could not allocate a unique join token")


def join_path(token: str) -> str:
    return f"/customer/join/{token}"


def join_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}{join_path(token)}"
