"""
Language adapter registry.

Maps stack ids to adapter instances. A registry is an ordinary object built
at startup and handed to the orchestrator; there is no module-level instance.
"""

import logging

from codeweave.errors import DuplicateAdapterError, UnknownAdapterError
from codeweave.languages.base.plugin import LanguageAdapter
from codeweave.languages.python.plugin import FastAPIPostgresAdapter
from codeweave.languages.typescript.plugin import ExpressPostgresAdapter, NextjsMongoAdapter

logger = logging.getLogger(__name__)

DEFAULT_STACK_ID = "nextjs-mongodb"


class LanguageAdapterRegistry:
    """Registry for language adapters."""

    def __init__(self, default_id: str | None = None):
        self._adapters: dict[str, LanguageAdapter] = {}
        self._default_id = default_id

    def register(self, adapter: LanguageAdapter) -> None:
        """
        Register an adapter under its id.

        Raises:
            TypeError: If ``adapter`` is not a LanguageAdapter
            DuplicateAdapterError: If the id is already registered
        """
        if not isinstance(adapter, LanguageAdapter):
            raise TypeError(f"{adapter!r} must extend LanguageAdapter")
        if adapter.id in self._adapters:
            raise DuplicateAdapterError(f"Adapter '{adapter.id}' is already registered")
        self._adapters[adapter.id] = adapter
        logger.debug(f"Registered stack adapter {adapter.id}")

    def get(self, stack_id: str | None = None) -> LanguageAdapter:
        """
        Look up an adapter.

        Args:
            stack_id: Adapter id; None selects the default

        Returns:
            The adapter, or the default adapter when ``stack_id`` is unknown

        Raises:
            UnknownAdapterError: If neither the id nor a default is registered
        """
        if stack_id and stack_id in self._adapters:
            return self._adapters[stack_id]
        if stack_id:
            logger.warning(f"Stack '{stack_id}' not found, using default '{self._default_id}'")
        if self._default_id and self._default_id in self._adapters:
            return self._adapters[self._default_id]
        raise UnknownAdapterError(
            f"Unsupported stack: {stack_id}. Available stacks: {self.list_stacks()}"
        )

    def has(self, stack_id: str) -> bool:
        return stack_id in self._adapters

    def list_stacks(self) -> list[str]:
        """Registered adapter ids, in registration order."""
        return list(self._adapters)

    def adapters(self) -> list[LanguageAdapter]:
        return list(self._adapters.values())

    @property
    def default_id(self) -> str | None:
        return self._default_id

    def set_default(self, stack_id: str) -> None:
        if stack_id not in self._adapters:
            raise UnknownAdapterError(f"Cannot make unregistered stack '{stack_id}' the default")
        self._default_id = stack_id


def create_default_registry() -> LanguageAdapterRegistry:
    """Build a registry holding the built-in stacks, with Next.js as default."""
    registry = LanguageAdapterRegistry()
    registry.register(NextjsMongoAdapter())
    registry.register(ExpressPostgresAdapter())
    registry.register(FastAPIPostgresAdapter())
    registry.set_default(DEFAULT_STACK_ID)
    return registry
