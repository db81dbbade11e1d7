from typing import Optional, Any
from collections.abc import Callable, Iterable, Iterator, MutableMapping
from .vault.models import DecryptedVariable, Transition, VariableOwner
from .vault.session_vault import VaultSession


class DecryptedCache(MutableMapping[str, DecryptedVariable]):
    """Decrypted variables dict-like object.

    Holds plaintext variables keyed by their row id for a UI or API layer
    while the vault is unlocked. Once bound to a VaultSession, the cache
    empties itself on every transition to LOCKED (explicit lock, auto-lock,
    rotation, teardown), so no decrypted value outlives the key.
    """

    def __init__(
        self,
        variables: Optional[Iterable[DecryptedVariable]] = None,
        session: Optional[VaultSession] = None
    ) -> None:
        self._data: dict[str, DecryptedVariable] = {}
        self._changed = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._session: Optional[VaultSession] = None
        if variables is not None:
            self.populate(variables)
        if session is not None:
            self.bind(session)

    def __repr__(self) -> str:
        bound = self._session is not None
        return (
            f'<Decrypted-Cache [bound:{bound}, changed:{self._changed}] '
            f'ids={list(self._data.keys())}>'
        )

    # --- Session binding ---

    def bind(self, session: VaultSession) -> None:
        """Subscribe to lock transitions of ``session``."""
        self.unbind()
        self._session = session
        self._unsubscribe = session.subscribe(self._on_transition)

    def unbind(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._session = None

    def _on_transition(self, event: Transition) -> None:
        if event.locked:
            self.invalidate()

    async def load(self) -> int:
        """Replace the contents with every variable of the bound session's store.

        Returns:
            Number of variables loaded.
        """
        if self._session is None:
            raise RuntimeError("DecryptedCache is not bound to a VaultSession")
        variables = await self._session.load_variables()
        self.invalidate()
        self.populate(variables)
        return len(variables)

    # --- Properties ---

    @property
    def empty(self) -> bool:
        return not bool(self._data)

    @property
    def is_changed(self) -> bool:
        return self._changed

    @is_changed.setter
    def is_changed(self, value: bool) -> None:
        self._changed = value

    def populate(self, variables: Iterable[DecryptedVariable]) -> None:
        for variable in variables:
            self[self._key_for(variable)] = variable

    def invalidate(self) -> None:
        """Drop every decrypted value."""
        self._changed = True
        self._data = {}

    def find(self, name: str, owner: Optional[VariableOwner] = None) -> Optional[DecryptedVariable]:
        """Return the first variable named ``name`` (optionally within ``owner``)."""
        for variable in self._data.values():
            if variable.name == name and (owner is None or variable.owner is owner):
                return variable
        return None

    def as_environ(self, owner: Optional[VariableOwner] = None) -> dict[str, str]:
        """Plain ``NAME -> value`` mapping, e.g. to export as a .env file."""
        return {
            v.name: v.value
            for v in self._data.values()
            if owner is None or v.owner is owner
        }

    @staticmethod
    def _key_for(variable: DecryptedVariable) -> str:
        return variable.id if variable.id is not None else variable.name

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: Any) -> bool:
        return str(key) in self._data

    def __getitem__(self, key: str) -> DecryptedVariable:
        return self._data[key]

    def __setitem__(self, key: str, value: DecryptedVariable) -> None:
        if not isinstance(value, DecryptedVariable):
            raise TypeError(
                f"DecryptedCache stores DecryptedVariable, got {type(value).__name__}"
            )
        self._data[key] = value
        self._changed = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._changed = True
