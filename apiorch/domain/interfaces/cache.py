"""Interface for the response cache.

Defines the contract for storing, retrieving and invalidating cached
responses keyed by request signature, with a TTL per entry.
"""

import abc
from typing import Any, Callable, Optional

from ..models.common import Signature

SignaturePredicate = Callable[[Signature], bool]

class CacheStore(abc.ABC):
    """Abstract Base Class for signature-keyed caching."""

    @abc.abstractmethod
    def get(self, signature: Signature) -> Optional[Any]:
        """Retrieves a cached value.

        Args:
            signature: The request signature to look up.

        Returns:
            The cached value if present and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    def put(self, signature: Signature, value: Any, ttl: Optional[float] = None) -> None:
        """Stores a value, overwriting any existing entry unconditionally.

        Args:
            signature: The request signature to store the value under.
            value: The response to cache.
            ttl: Time-to-live in seconds (uses the store default if None).
        """
        pass

    @abc.abstractmethod
    def invalidate(self, predicate: SignaturePredicate) -> int:
        """Removes every entry whose signature matches the predicate.

        Returns:
            The number of entries removed.
        """
        pass

    @abc.abstractmethod
    def delete(self, signature: Signature) -> bool:
        """Removes a single entry. Returns True if it existed."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Removes all entries."""
        pass

    @abc.abstractmethod
    def __len__(self) -> int:
        pass
