"""Optimistic update with rollback, expressed as a small command object."""
import logging
from typing import Any, Callable, Dict, Generic, Optional, Sequence, TypeVar

from fieldops.exceptions import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class OptimisticUpdate(Generic[T]):
    """
    Snapshot pre-state, apply the local change, fire the request, restore the
    snapshot if the request is rejected.

    ``fields`` names the attributes of ``target`` that the local change may
    touch. Their values are captured before ``apply`` runs, so rollback never
    depends on variables captured at call time.

    Usage:
        update = OptimisticUpdate(
            manager, ('items', 'show_form'),
            apply=lambda: ...,
            request=lambda: client.create_or_replace_change_order(payload),
        )
        saved = update.run(on_success=..., on_failure=...)
    """

    def __init__(
        self,
        target: Any,
        fields: Sequence[str],
        apply: Callable[[], None],
        request: Callable[[], T]
    ):
        self.target = target
        self.fields = tuple(fields)
        self.apply = apply
        self.request = request
        self.snapshot: Dict[str, Any] = {}
        self.rolled_back = False

    def capture(self) -> None:
        self.snapshot = {name: getattr(self.target, name) for name in self.fields}

    def restore(self) -> None:
        for name, value in self.snapshot.items():
            setattr(self.target, name, value)
        self.rolled_back = True

    def run(
        self,
        on_success: Optional[Callable[[T], None]] = None,
        on_failure: Optional[Callable[[PersistenceError], None]] = None
    ) -> Optional[T]:
        """
        Execute the update. Returns the request result, or None when the
        store rejected it and the snapshot was restored.
        """
        self.capture()
        self.apply()

        try:
            result = self.request()
        except PersistenceError as e:
            logger.warning(f"[OPTIMISTIC] Rolling back {type(self.target).__name__}: {e.message}")
            self.restore()
            if on_failure:
                on_failure(e)
            return None
        except Exception:
            self.restore()
            raise

        if on_success:
            on_success(result)
        return result
