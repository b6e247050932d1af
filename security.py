"""Helper utilities for hashing and verifying API keys and checking access rules."""

from __future__ import annotations

import argparse
import hmac
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import bcrypt
from werkzeug.security import check_password_hash

BCRYPT_ROUNDS = 12
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
WERKZEUG_PREFIXES = ("scrypt:", "pbkdf2:")
RULE_KINDS = ("role", "id", "and", "or")


def hash_api_key(api_key: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash the provided key using bcrypt with a per-key salt."""

    if not isinstance(api_key, str):
        raise TypeError("API key must be a string.")
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(api_key.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_api_key(candidate: str, stored: str | bytes | None) -> bool:
    """Validate a presented key against a stored literal key or hash."""

    if not candidate or not stored:
        return False

    stored_str = stored.decode("utf-8") if isinstance(stored, bytes) else str(stored)

    if stored_str.startswith(WERKZEUG_PREFIXES):
        return check_password_hash(stored_str, candidate)

    if stored_str.startswith(BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), stored_str.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    return hmac.compare_digest(candidate.encode("utf-8"), stored_str.encode("utf-8"))


# --------------------------------------------------------------------------------------
# Key registry
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class Principal:
    id: str
    secret: str
    roles: frozenset[str] = field(default_factory=frozenset)


def authenticate(api_key: Optional[str], principals: Iterable[Principal]) -> Optional[Principal]:
    """Return the principal owning ``api_key``, if any."""

    if not api_key:
        return None
    for principal in principals:
        if verify_api_key(api_key, principal.secret):
            return principal
    return None


# --------------------------------------------------------------------------------------
# Access rules
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessRule:
    kind: str
    value: str = ""
    nested: tuple["AccessRule", ...] = ()

    def allows(self, principal: Principal) -> bool:
        if self.kind == "role":
            return self.value.upper() in principal.roles
        if self.kind == "id":
            return principal.id == self.value
        if self.kind == "and":
            return all(rule.allows(principal) for rule in self.nested)
        if self.kind == "or":
            return any(rule.allows(principal) for rule in self.nested)
        return False


def is_allowed(principal: Principal, rules: Sequence[AccessRule]) -> bool:
    """Top-level rules combine with OR."""

    return any(rule.allows(principal) for rule in rules)


# --------------------------------------------------------------------------------------
# Command line
# --------------------------------------------------------------------------------------


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Print a bcrypt hash suitable for the ``key_hash`` field of an auth entry."""

    parser = argparse.ArgumentParser(description="Hash an API key for use as key_hash in a spec file.")
    parser.add_argument("api_key", help="Key to hash")
    parser.add_argument("--rounds", type=int, default=BCRYPT_ROUNDS, help="bcrypt cost factor")
    args = parser.parse_args(argv)
    print(hash_api_key(args.api_key, rounds=args.rounds))


if __name__ == "__main__":
    main()
