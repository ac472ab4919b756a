from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from workshop_fulfillment.exceptions import FulfillmentError

T = TypeVar('T')


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation whose failure is an expected domain condition.

    Exactly one of ``value`` and ``error`` is meaningful: when ``error`` is
    set the operation failed and ``value`` is None.
    """

    value: Optional[T] = None
    error: Optional[FulfillmentError] = None

    @classmethod
    def success(cls, value: Any = None) -> 'Result':
        return cls(value=value)

    @classmethod
    def failure(cls, error: FulfillmentError) -> 'Result':
        if error is None:
            raise ValueError("A failed result needs an error")
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self):
        return self.ok

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self):
        if self.ok:
            return {'success': True, 'value': self.value}
        return {'success': False, **self.error.to_dict()}
