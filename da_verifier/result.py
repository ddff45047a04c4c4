"""Tagged verification verdict."""

from dataclasses import dataclass
from typing import Any, Optional

from .errors import ValidatorError


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of checking a DA submission.

    Either a success carrying the validated publication, or a failure carrying
    the error kind and, where one was fetched, the publication as context.
    """
    error: Optional[ValidatorError] = None
    publication: Optional[Any] = None

    @classmethod
    def success(cls, publication: Any) -> "Verdict":
        return cls(error=None, publication=publication)

    @classmethod
    def failure(cls, error: ValidatorError, context: Any = None) -> "Verdict":
        if error is None:
            raise ValueError("A failed verdict needs an error kind")
        return cls(error=error, publication=context)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @property
    def context(self) -> Any:
        """Publication attached to a failure (None when nothing was fetched)."""
        return self.publication if self.is_failure else None
