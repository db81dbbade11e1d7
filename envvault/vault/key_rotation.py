"""
Vault Key Rotation — Re-encryption of every secret when the master password changes.

Steps, in order; a failure in any of them aborts with nothing persisted:
1. derive the old key from the stored salt and prove it decrypts every row;
2. keep the decrypted pairs in memory only;
3. draw a fresh salt and derive the new key;
4. re-encrypt every pair with fresh nonces;
5. hand salt and rows to the store as one atomic write;
6. lock the session, since the old key is now useless.

Security Note:
    Plaintext exists in memory only for the duration of one rotation call.
    Never log plaintext, ciphertext, passwords or salts.
"""
import hmac
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Optional

from .codec import encode_base64
from .config import VaultConfig
from .crypto import derive_key_async, generate_salt
from .exceptions import (
    AuthenticationError,
    IntegrityError,
    RotationCommitError,
    WeakPasswordError,
)
from .models import EncryptedVariable, RotationBundle, TransitionReason
from .policy import validate_master_password
from .storage import VaultStore
from .variables import decrypt_variables, encrypt_variables

if TYPE_CHECKING:
    from .session_vault import VaultSession

logger = logging.getLogger("envvault.vault")

PasswordVerifier = Callable[[str], Awaitable[bool]]


async def reencrypt_vault(
    old_secret: str,
    new_secret: str,
    current_salt: bytes,
    variables: Iterable[EncryptedVariable],
) -> RotationBundle:
    """Decrypt every row with the old password and re-encrypt with the new one.

    Pure with respect to storage: nothing is written.

    Args:
        old_secret: Current master password.
        new_secret: New master password.
        current_salt: Salt the rows are currently encrypted under.
        variables: Every encrypted row of the user.

    Returns:
        RotationBundle with the new salt and re-encrypted rows, in input order.

    Raises:
        AuthenticationError: If the old password fails to decrypt any row.
        InvalidSaltError: If ``current_salt`` is malformed.
    """
    items = list(variables)
    old_key = await derive_key_async(old_secret, current_salt)
    try:
        plaintexts = await decrypt_variables(items, old_key)
    except IntegrityError as err:
        logger.warning(
            "Rotation aborted: current master password does not decrypt the vault"
        )
        raise AuthenticationError("Current master password is incorrect") from err
    del old_key

    new_salt = generate_salt()
    new_key = await derive_key_async(new_secret, new_salt)
    reencrypted = await encrypt_variables(plaintexts, new_key)
    del plaintexts, new_key

    return RotationBundle(
        new_salt=encode_base64(new_salt),
        reencrypted=reencrypted,
    )


async def rotate_master_password(
    store: VaultStore,
    old_secret: str,
    new_secret: str,
    *,
    session: Optional["VaultSession"] = None,
    config: Optional[VaultConfig] = None,
    password_verifier: Optional[PasswordVerifier] = None,
    current_key: Optional[bytes] = None,
) -> RotationBundle:
    """Change the master password and commit the re-encrypted vault.

    The old password must be confirmed before anything is written: by the
    verifier, by ``current_key``, or by decrypting the stored rows. An empty
    vault with neither a verifier nor a known key is refused.

    Args:
        store: Persistence collaborator; must apply the bundle atomically.
        old_secret: Current master password.
        new_secret: New master password.
        session: VaultSession to lock once the commit succeeds.
        config: Settings for the password policy (defaults to VaultConfig()).
        password_verifier: Optional server-side check of the old password,
            kept separate from key derivation.
        current_key: Live vault key of an unlocked session; the key derived
            from ``old_secret`` must match it.

    Returns:
        The committed RotationBundle.

    Raises:
        WeakPasswordError: New password rejected by the policy.
        AuthenticationError: Old password rejected.
        RotationCommitError: The store failed to commit; nothing was changed
            and the session is left as it was.
    """
    config = config or VaultConfig()
    if not new_secret:
        raise ValueError("New master password cannot be empty")
    if config.enforce_password_policy:
        valid, errors = validate_master_password(
            new_secret, min_length=config.min_password_length,
        )
        if not valid:
            raise WeakPasswordError(errors)

    if password_verifier is not None and not await password_verifier(old_secret):
        logger.warning("Rotation aborted: password verifier rejected the current password")
        raise AuthenticationError("Current master password is incorrect")

    salt = await store.fetch_salt()
    if current_key is not None:
        old_key = await derive_key_async(old_secret, salt)
        if not hmac.compare_digest(old_key, current_key):
            logger.warning("Rotation aborted: current password does not match the unlocked vault")
            raise AuthenticationError("Current master password is incorrect")
        del old_key

    variables = await store.fetch_variables()
    if not variables and password_verifier is None and current_key is None:
        logger.warning(
            "Rotation aborted: empty vault and no way to check the current password"
        )
        raise AuthenticationError(
            "Current master password cannot be verified for an empty vault"
        )

    logger.info("Starting master password rotation (%d row(s))", len(variables))
    bundle = await reencrypt_vault(old_secret, new_secret, salt, variables)

    try:
        await store.commit_rotation(bundle)
    except Exception as err:
        logger.error("Rotation commit failed, vault left unchanged: %s", err)
        raise RotationCommitError(f"Failed to commit rotation: {err}") from err

    logger.info("Master password rotation committed: %d row(s)", len(bundle.reencrypted))
    if session is not None:
        session.lock(TransitionReason.ROTATED)
    return bundle
