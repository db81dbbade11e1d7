"""
VaultSession — Holds the derived vault key for one unlocked session.

Provides the public API of the vault core:
- ``unlock(master_password)`` — derive the key from password + salt
- ``lock()`` — drop the key and notify subscribers
- ``touch()`` — user activity, pushes the auto-lock deadline forward
- ``encrypt_variable`` / ``decrypt_variable`` / ``load_variables``
- ``rotate_master_password(old, new)`` — re-encrypt the vault, then lock
- ``is_unlocked()`` / ``time_remaining()`` / ``subscribe(listener)``

State machine::

    LOCKED --unlock--> UNLOCKING --success--> UNLOCKED
                           |                     |
                           +--failure--> LOCKED <+-- lock / timeout / rotation

Each unlock attempt and each lock moves a generation counter. Results of
work started under an older generation are discarded, so a stale
derivation never populates the session and a decryption that raced a lock
never returns plaintext.

Security Note:
    Never log passwords, keys or plaintext. The key slot is replaced, never
    mutated; after ``lock()`` the session keeps no reference to it.
    Components caching decrypted values must ``subscribe()`` and purge on
    a transition to LOCKED.
"""
import asyncio
import hmac
import time
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Optional, Union

from .codec import decode_base64
from .config import MAX_AUTO_LOCK_MINUTES, MIN_AUTO_LOCK_MINUTES, VaultConfig
from .crypto import derive_key_async
from .exceptions import AuthenticationError, SessionLockedError, UnlockSupersededError
from .key_rotation import rotate_master_password
from .models import (
    DecryptedVariable,
    EncryptedVariable,
    RotationBundle,
    Transition,
    TransitionReason,
    VariableOwner,
    VaultState,
)
from .storage import VaultStore
from . import variables as variable_codec

logger = logging.getLogger("envvault.vault")

Listener = Callable[[Transition], None]
PasswordVerifier = Callable[[str], Awaitable[bool]]


class _UnlockAttempt:
    """One in-flight derivation, shared by every caller that coalesced onto it."""

    __slots__ = ("generation", "secret", "salt", "task", "waiters")

    def __init__(self, generation: int, secret: str, salt: Union[str, bytes, None]):
        self.generation = generation
        self.secret = secret
        self.salt = salt
        self.task: Optional[asyncio.Task] = None
        self.waiters = 0

    def matches(self, secret: str, salt: Union[str, bytes, None]) -> bool:
        # salt arguments are compared as given; None means "read from the store"
        return self.salt == salt and hmac.compare_digest(
            self.secret.encode("utf-8"), secret.encode("utf-8"),
        )


def _consume_result(task: asyncio.Task) -> None:
    # abandoned attempts may finish with nobody awaiting them
    if not task.cancelled():
        task.exception()


class VaultSession:
    """Session-bound holder of the vault key.

    Construct one per process (or per browser tab in a UI host) and pass it
    to the collaborators that need encryption.

    Args:
        store: Persistence collaborator providing the salt and rows.
        config: Vault settings; ``auto_lock_minutes`` seeds the timeout.
        clock: Monotonic time source in seconds (injectable for tests).
        password_verifier: Optional server-side password check, consulted
            before the key is derived.
    """

    def __init__(
        self,
        store: Optional[VaultStore] = None,
        *,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        password_verifier: Optional[PasswordVerifier] = None,
    ):
        self._store = store
        self._config = config or VaultConfig()
        self._clock = clock
        self._verifier = password_verifier
        self._state = VaultState.LOCKED
        self._key: Optional[bytes] = None
        self._deadline: Optional[float] = None
        self._auto_lock_minutes = self._config.auto_lock_minutes
        self._generation = 0
        self._inflight: Optional[_UnlockAttempt] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: list[Listener] = []
        self._rotating = False

    def __repr__(self) -> str:
        return (
            f'<VaultSession [status:{self._state.value}, '
            f'generation:{self._generation}, '
            f'auto_lock:{self._auto_lock_minutes}m]>'
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def status(self) -> VaultState:
        self._expire_if_due()
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def is_unlocked(self) -> bool:
        return self.status is VaultState.UNLOCKED

    def time_remaining(self) -> Optional[float]:
        """Seconds until auto-lock, or None while not unlocked."""
        if self.status is not VaultState.UNLOCKED or self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    @property
    def auto_lock_minutes(self) -> int:
        return self._auto_lock_minutes

    def set_auto_lock_minutes(self, minutes: int) -> None:
        """Change the inactivity timeout.

        While unlocked the deadline is rescheduled at once with the new
        duration.

        Raises:
            ValueError: If ``minutes`` is outside 1..60.
        """
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ValueError("Auto-lock duration must be an integer number of minutes")
        if not MIN_AUTO_LOCK_MINUTES <= minutes <= MAX_AUTO_LOCK_MINUTES:
            raise ValueError(
                f"Auto-lock duration must be between {MIN_AUTO_LOCK_MINUTES} "
                f"and {MAX_AUTO_LOCK_MINUTES} minutes, got {minutes}"
            )
        self._auto_lock_minutes = minutes
        if self.status is VaultState.UNLOCKED:
            self._arm()
        logger.debug("Auto-lock set to %d minute(s)", minutes)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: VaultState, reason: TransitionReason) -> None:
        previous, self._state = self._state, state
        event = Transition(
            previous=previous,
            current=state,
            reason=reason,
            generation=self._generation,
        )
        logger.debug(
            "Vault %s -> %s (%s, generation=%d)",
            previous.value, state.value, reason.value, self._generation,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Vault transition listener %r failed", listener)

    # ------------------------------------------------------------------
    # Auto-lock
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_timer(self) -> None:
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: deadline is enforced lazily on the next access
            return
        delay = max(0.0, self._deadline - self._clock())
        self._timer = loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._state is not VaultState.UNLOCKED or self._deadline is None:
            return
        if self._clock() >= self._deadline:
            self._expire_if_due()
        else:
            self._schedule_timer()

    def _arm(self) -> None:
        self._deadline = self._clock() + self._auto_lock_minutes * 60
        self._schedule_timer()

    def _expire_if_due(self) -> None:
        if (
            self._state is VaultState.UNLOCKED
            and self._deadline is not None
            and self._clock() >= self._deadline
        ):
            logger.info(
                "Vault auto-locked after %d minute(s) of inactivity",
                self._auto_lock_minutes,
            )
            self.lock(TransitionReason.TIMEOUT)

    def touch(self) -> bool:
        """Record user activity.

        Returns:
            True if the auto-lock deadline was pushed forward.
        """
        if self.status is not VaultState.UNLOCKED:
            return False
        self._arm()
        return True

    # ------------------------------------------------------------------
    # Lock / unlock
    # ------------------------------------------------------------------

    def lock(self, reason: TransitionReason = TransitionReason.EXPLICIT) -> None:
        """Drop the key and move to LOCKED.

        An unlock still in flight is abandoned; its waiters get
        ``UnlockSupersededError``.
        """
        self._generation += 1
        attempt, self._inflight = self._inflight, None
        if attempt is not None and attempt.task is not None:
            attempt.task.cancel()
        self._cancel_timer()
        self._key = None
        self._deadline = None
        if self._state is not VaultState.LOCKED:
            self._transition(VaultState.LOCKED, reason)

    async def _resolve_salt(self, salt: Union[str, bytes, None]) -> bytes:
        if salt is None:
            if self._store is None:
                raise RuntimeError("No salt given and no vault store configured")
            return await self._store.fetch_salt()
        if isinstance(salt, str):
            return decode_base64(salt)
        return salt

    def _check_current(self, attempt: _UnlockAttempt) -> None:
        if self._generation != attempt.generation:
            raise UnlockSupersededError(
                f"Unlock attempt #{attempt.generation} was superseded "
                f"(current generation {self._generation})"
            )

    async def _run_unlock(self, attempt: _UnlockAttempt) -> None:
        try:
            if self._verifier is not None:
                if not await self._verifier(attempt.secret):
                    raise AuthenticationError("Invalid master password")
                self._check_current(attempt)
            salt_bytes = await self._resolve_salt(attempt.salt)
            self._check_current(attempt)
            key = await derive_key_async(attempt.secret, salt_bytes)
            self._check_current(attempt)
        except UnlockSupersededError:
            logger.debug("Discarding result of unlock attempt #%d", attempt.generation)
            raise
        except BaseException as err:
            if self._generation == attempt.generation:
                self._inflight = None
                logger.warning(
                    "Unlock attempt #%d failed: %s", attempt.generation, type(err).__name__,
                )
                self._transition(VaultState.LOCKED, TransitionReason.UNLOCK_FAILED)
            raise
        finally:
            attempt.secret = ""
        self._inflight = None
        self._key = key
        self._arm()
        self._transition(VaultState.UNLOCKED, TransitionReason.UNLOCKED)
        logger.info("Vault unlocked (generation=%d)", attempt.generation)

    def _start_attempt(self, master_secret: str, salt: Union[str, bytes, None]) -> _UnlockAttempt:
        previous = self._inflight
        self._generation += 1
        attempt = _UnlockAttempt(self._generation, master_secret, salt)
        if previous is not None:
            logger.info(
                "Unlock attempt #%d superseded by #%d",
                previous.generation, attempt.generation,
            )
        self._inflight = attempt
        attempt.task = asyncio.ensure_future(self._run_unlock(attempt))
        attempt.task.add_done_callback(_consume_result)
        if self._state is not VaultState.UNLOCKING:
            self._transition(VaultState.UNLOCKING, TransitionReason.UNLOCK_STARTED)
        return attempt

    async def _wait(self, attempt: _UnlockAttempt) -> None:
        attempt.waiters += 1
        try:
            await asyncio.shield(attempt.task)
        except asyncio.CancelledError:
            if attempt.task.cancelled():
                raise UnlockSupersededError(
                    f"Unlock attempt #{attempt.generation} was abandoned"
                ) from None
            attempt.waiters -= 1
            if attempt.waiters == 0 and self._inflight is attempt:
                logger.info("Unlock attempt #%d abandoned by its caller", attempt.generation)
                self._generation += 1
                self._inflight = None
                attempt.task.cancel()
                self._transition(VaultState.LOCKED, TransitionReason.ABANDONED)
            raise

    async def _confirm(self, master_secret: str, salt: Union[str, bytes, None]) -> None:
        generation = self._generation
        salt_bytes = await self._resolve_salt(salt)
        key = await derive_key_async(master_secret, salt_bytes)
        if generation != self._generation or self._key is None:
            raise UnlockSupersededError("Vault was locked during re-authentication")
        if not hmac.compare_digest(key, self._key):
            raise AuthenticationError("Master password does not match the unlocked vault")
        self._arm()

    async def unlock(self, master_secret: str, salt: Union[str, bytes, None] = None) -> None:
        """Derive the vault key and move to UNLOCKED.

        Args:
            master_secret: The user's master password.
            salt: User salt (bytes or base64); fetched from the store if omitted.

        Concurrent calls with the same password and salt share one derivation.
        A call with a different password or salt supersedes the one in
        flight. On an already unlocked session the password is re-checked
        against the live key and the deadline refreshed.

        Raises:
            AuthenticationError: Password rejected by the verifier, or not
                matching the live key of an unlocked session.
            InvalidSaltError: Malformed salt.
            UnlockSupersededError: A newer attempt or a lock replaced this one.
        """
        if not master_secret:
            raise ValueError("Master password cannot be empty")
        if self.status is VaultState.UNLOCKED:
            await self._confirm(master_secret, salt)
            return
        attempt = self._inflight
        if attempt is not None and attempt.matches(master_secret, salt):
            logger.debug("Coalescing unlock with attempt #%d", attempt.generation)
        else:
            attempt = self._start_attempt(master_secret, salt)
        await self._wait(attempt)

    async def close(self) -> None:
        """Tear the session down: lock and forget subscribers."""
        self.lock(TransitionReason.TEARDOWN)
        self._listeners.clear()

    async def __aenter__(self) -> "VaultSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Cryptographic operations
    # ------------------------------------------------------------------

    def _current_key(self) -> tuple[bytes, int]:
        if self.status is not VaultState.UNLOCKED or self._key is None:
            raise SessionLockedError("Vault is locked")
        return self._key, self._generation

    def _ensure_current(self, generation: int) -> None:
        self._expire_if_due()
        if generation != self._generation:
            raise SessionLockedError(
                "Vault was locked while the operation was in flight"
            )

    async def encrypt_variable(
        self,
        name: str,
        value: str,
        *,
        is_secret: bool = False,
        id: Optional[str] = None,
        owner: VariableOwner = VariableOwner.ENVIRONMENT,
    ) -> EncryptedVariable:
        """Encrypt a name/value pair under the live key.

        Raises:
            SessionLockedError: Not unlocked, rotation in progress, or locked
                before the encryption finished.
        """
        if self._rotating:
            raise SessionLockedError("Master password rotation in progress")
        key, generation = self._current_key()
        ev = await variable_codec.encrypt_variable(
            name, value, key, is_secret=is_secret, id=id, owner=owner,
        )
        self._ensure_current(generation)
        return ev

    async def decrypt_variable(self, ev: EncryptedVariable) -> DecryptedVariable:
        """Decrypt one record under the live key.

        Raises:
            SessionLockedError: Not unlocked, or locked mid-flight.
            IntegrityError: Wrong key or tampered record.
        """
        key, generation = self._current_key()
        dv = await variable_codec.decrypt_variable(ev, key)
        self._ensure_current(generation)
        return dv

    async def decrypt_variables(
        self, variables: Iterable[EncryptedVariable],
    ) -> list[DecryptedVariable]:
        key, generation = self._current_key()
        result = await variable_codec.decrypt_variables(variables, key)
        self._ensure_current(generation)
        return result

    async def load_variables(self) -> list[DecryptedVariable]:
        """Fetch every row from the store and decrypt it."""
        if self._store is None:
            raise RuntimeError("No vault store configured")
        self._current_key()
        rows = await self._store.fetch_variables()
        variables = await self.decrypt_variables(rows)
        logger.debug("Loaded %d variable(s) from store", len(variables))
        return variables

    async def rotate_master_password(self, old_secret: str, new_secret: str) -> RotationBundle:
        """Re-encrypt the whole vault under a new master password.

        The session is locked once the store has committed; the caller must
        unlock again with the new password.
        """
        if self._store is None:
            raise RuntimeError("No vault store configured")
        if self._rotating:
            raise RuntimeError("A master password rotation is already running")
        current_key = self._key if self.status is VaultState.UNLOCKED else None
        self._rotating = True
        try:
            return await rotate_master_password(
                self._store,
                old_secret,
                new_secret,
                session=self,
                config=self._config,
                password_verifier=self._verifier,
                current_key=current_key,
            )
        finally:
            self._rotating = False
