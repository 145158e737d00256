"""
Deterministic release of key material and ciphertext data.

Objects holding secret or bulky material derive from Releasable. They can
be released explicitly or by leaving a ``with`` block; any use after that
raises InvalidStateError instead of touching dropped data.
"""

from .errors import InvalidStateError


class Releasable:
    """Mixin for objects whose material is dropped on release()."""

    _released: bool = False

    def _release_resources(self) -> None:
        """Drop owned material. Subclasses override."""

    def release(self) -> None:
        """Release owned material. Idempotent."""
        if not self._released:
            self._release_resources()
            self._released = True

    @property
    def released(self) -> bool:
        return self._released

    def _ensure_alive(self) -> None:
        if self._released:
            raise InvalidStateError(f"{type(self).__name__} has been released")

    def __enter__(self):
        self._ensure_alive()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


def ensure_not_released(obj, name: str) -> None:
    """Raise InvalidStateError if `obj` is a released Releasable."""
    if isinstance(obj, Releasable) and obj.released:
        raise InvalidStateError(f"{name}: {type(obj).__name__} was released")
