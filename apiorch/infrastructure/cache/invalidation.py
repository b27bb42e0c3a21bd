"""Invalidation bus: purges cached reads made stale by a mutation.

The default rule is deliberately broad. A mutation on a resource evicts every
cached read of that resource (single-item fetches and list/filter queries)
within the same tenant, and entries or mutations without a tenant match all
tenants. Individual resources can plug in their own rule.
"""

import logging
from typing import Callable, Dict, Optional

from apiorch.domain.events.api_events import CacheInvalidated
from apiorch.domain.events.dispatcher import EventDispatcher
from apiorch.domain.interfaces.cache import CacheStore, SignaturePredicate
from apiorch.domain.models.common import MutationTag, Signature

logger = logging.getLogger(__name__)

PredicateFactory = Callable[[str, Optional[str]], SignaturePredicate]


def resource_tenant_predicate(resource_name: str, tenant_scope: Optional[str]) -> SignaturePredicate:
    """Default rule: same resource, overlapping tenant scope."""
    def matches(signature: Signature) -> bool:
        if signature.resource_name != resource_name:
            return False
        if tenant_scope is None or signature.tenant_scope is None:
            return True
        return signature.tenant_scope == tenant_scope
    return matches


class InvalidationBus:
    """Translates mutations into cache purges."""

    def __init__(
        self,
        cache: CacheStore,
        dispatcher: Optional[EventDispatcher] = None,
        default_factory: PredicateFactory = resource_tenant_predicate,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.default_factory = default_factory
        self._overrides: Dict[str, PredicateFactory] = {}

    def register(self, resource_name: str, factory: PredicateFactory) -> None:
        """Overrides the invalidation rule for one resource."""
        self._overrides[resource_name] = factory
        logger.debug(f"Registered custom invalidation rule for '{resource_name}'")

    def predicate_for(self, tag: MutationTag) -> SignaturePredicate:
        factory = self._overrides.get(tag.resource_name, self.default_factory)
        return factory(tag.resource_name, tag.tenant_scope)

    def on_mutation(self, resource_name: str, tenant_scope: Optional[str] = None, reason: str = "mutation") -> int:
        """Purges cache entries affected by a mutation on `resource_name`."""
        tag = MutationTag(resource_name=resource_name, tenant_scope=tenant_scope)
        removed = self.cache.invalidate(self.predicate_for(tag))
        logger.debug(f"Invalidated {removed} entries for {resource_name} (tenant={tenant_scope}, reason={reason})")
        self._publish(resource_name, tenant_scope, removed, reason)
        return removed

    def clear_resource(self, resource_name: str) -> int:
        """Purges every cached read of a resource, across all tenants."""
        removed = self.cache.invalidate(lambda sig: sig.resource_name == resource_name)
        logger.info(f"Cleared cache for {resource_name} ({removed} entries)")
        self._publish(resource_name, None, removed, "manual")
        return removed

    def _publish(self, resource_name: str, tenant_scope: Optional[str], removed: int, reason: str) -> None:
        if self.dispatcher is not None:
            self.dispatcher.dispatch(CacheInvalidated(
                resource=resource_name, tenant_scope=tenant_scope,
                entries_removed=removed, reason=reason,
            ))
