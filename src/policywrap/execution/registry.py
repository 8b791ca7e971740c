"""Policy Registry — injectable name → policy chain lookup.

Manifesto:
A circuit breaker only protects a database when every caller talking to
that database sees the same breaker. Shared executors therefore don't own
their chain: they resolve it by name from a registry on every call. The
first build under a name creates the entry; later builds with the same name
reuse it, so a circuit opened through one executor is observed as open by
every other one immediately.

The registry is an explicit value. Builders accept one (``registry=``) and
fall back to the process-wide default registry only when none is given.

ARCHITECTURE
────────────
::

    PolicyRegistry
      ├── .get_or_add(name, factory)  ─ first build wins, atomic
      ├── .get(name)                  ─ lookup, PolicyNotFoundError if absent
      ├── name in registry            ─ existence check
      ├── .names()                    ─ all registered names
      └── .clear()                    ─ test isolation only

    get_default_registry()     ─ module-level singleton
    reset_default_registry()   ─ clear for testing

BEST PRACTICES
──────────────
- Pass an explicit ``PolicyRegistry`` in tests.
- Call ``reset_default_registry()`` in test fixtures.

Tags:
    policywrap, execution, registry, shared-state, circuit-breaker

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from policywrap.core.errors import PolicyNotFoundError
from policywrap.core.logging import get_logger

if TYPE_CHECKING:
    from policywrap.execution.chain import PolicyChain

logger = get_logger(__name__)


class PolicyRegistry:
    """Thread-safe mapping of names to shared policy chains.

    Example:
        >>> registry = PolicyRegistry()
        >>> chain = registry.get_or_add("orders-db", build_chain)
        >>> registry.get("orders-db") is chain
        True
    """

    def __init__(self) -> None:
        self._chains: dict[str, PolicyChain] = {}
        self._lock = threading.RLock()

    def get_or_add(self, name: str, factory: Callable[[], PolicyChain]) -> PolicyChain:
        """Return the chain registered under ``name``, creating it on first use.

        ``factory`` runs at most once per name, under the registry lock.
        """
        with self._lock:
            chain = self._chains.get(name)
            if chain is None:
                chain = factory()
                self._chains[name] = chain
                logger.info(
                    "policy_chain_registered",
                    name=name,
                    chain=chain.name,
                )
            return chain

    def get(self, name: str) -> PolicyChain:
        """Get a chain by name.

        Raises:
            PolicyNotFoundError: If nothing is registered under ``name``
        """
        with self._lock:
            chain = self._chains.get(name)
            if chain is None:
                raise PolicyNotFoundError(name, sorted(self._chains))
            return chain

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._chains

    def __len__(self) -> int:
        with self._lock:
            return len(self._chains)

    def names(self) -> list[str]:
        """List all registered names."""
        with self._lock:
            return sorted(self._chains)

    def clear(self) -> None:
        """Remove every entry (for testing)."""
        with self._lock:
            self._chains.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: PolicyRegistry | None = None
_default_lock = threading.Lock()


def get_default_registry() -> PolicyRegistry:
    """Get the global default registry.

    Creates it lazily on first access.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = PolicyRegistry()
        return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    with _default_lock:
        _default_registry = None


__all__ = ["PolicyRegistry", "get_default_registry", "reset_default_registry"]
