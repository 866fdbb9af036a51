"""
auth/registration.py -- Writing identity records: registration and password change.

Registration checks for an existing identifier BEFORE hashing so a duplicate
submission does not pay the bcrypt cost. The check is only an optimization:
two concurrent registrations for the same identifier can both pass it, and the
UNIQUE constraint in CredentialStore.insert() then rejects the loser with
DuplicateIdentifier.

Neither function touches sessions. Registration ignores whatever session
token the client presented (no fixation via a pre-registration session).
"""

from __future__ import annotations

from auth.models import IdentityRecord
from auth.passwords import PasswordHasher
from auth.store import CredentialStore, normalize_identifier
from core.errors import DuplicateIdentifier, InvalidCredentials

MIN_SECRET_LENGTH = 6


def _check_secret(secret: str) -> None:
    if len(secret) < MIN_SECRET_LENGTH:
        raise ValueError(f"Secret must be at least {MIN_SECRET_LENGTH} characters.")


async def register_identity(
    store: CredentialStore,
    hasher: PasswordHasher,
    identifier: str,
    secret: str,
    display_name: str | None = None,
) -> IdentityRecord:
    """Create a new identity. Raises ValueError or DuplicateIdentifier."""
    normalized = normalize_identifier(identifier)
    if not normalized:
        raise ValueError("Identifier is required.")
    _check_secret(secret)

    if await store.exists(normalized):
        raise DuplicateIdentifier("identifier already registered")

    hash_record = await hasher.hash_async(secret)
    return await store.insert(normalized, hash_record, display_name=display_name)


async def change_secret(
    store: CredentialStore,
    hasher: PasswordHasher,
    identifier: str,
    current_secret: str,
    new_secret: str,
) -> None:
    """Replace an identity's secret after re-verifying the current one.

    A wrong current secret raises the same generic InvalidCredentials as login.
    """
    _check_secret(new_secret)
    record = await store.find_by_identifier(identifier)
    if record is None:
        await hasher.verify_async(current_secret, hasher.dummy_hash)
        raise InvalidCredentials()
    if not await hasher.verify_async(current_secret, record.secret_hash):
        raise InvalidCredentials()

    hash_record = await hasher.hash_async(new_secret)
    if not await store.update_secret_hash(record.identifier, hash_record):
        raise InvalidCredentials()
