"""Aggregate tool descriptors from several providers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .types import ToolDescriptor, ToolProvider

logger = logging.getLogger(__name__)


def wire_name(name: str) -> str:
    """Return the tool name as sent to the chat backend.

    Some OpenAI-compatible servers reject dashes in function names, so every
    dash becomes an underscore. The provider is still called with the
    original name.
    """

    return name.replace("-", "_")


def _provider_label(provider: Any) -> str:
    return getattr(provider, "provider_id", None) or type(provider).__name__


@dataclass
class _ToolBinding:
    descriptor: ToolDescriptor
    provider: ToolProvider


class ToolRegistry:
    """Read-only view over the tools exposed by a set of providers."""

    def __init__(self) -> None:
        self._bindings: dict[str, _ToolBinding] = {}

    @classmethod
    async def aggregate(cls, providers: Sequence[ToolProvider]) -> ToolRegistry:
        """List tools from every provider concurrently and merge them.

        Providers whose listing fails are skipped. When two providers declare
        the same tool the later one wins.
        """

        registry = cls()
        providers = list(providers)
        results = await asyncio.gather(
            *(provider.list_tools() for provider in providers),
            return_exceptions=True,
        )
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Dropping tools from provider %s: %s",
                    _provider_label(provider),
                    result,
                )
                continue
            if isinstance(result, BaseException):
                raise result
            for descriptor in result:
                registry.register(provider, descriptor)
        logger.debug("Aggregated %d tools from %d providers", len(registry), len(providers))
        return registry

    def register(self, provider: ToolProvider, descriptor: ToolDescriptor) -> None:
        key = wire_name(descriptor.name)
        existing = self._bindings.get(key)
        if existing is not None:
            logger.debug(
                "Tool '%s' from %s replaces the definition from %s",
                descriptor.name,
                _provider_label(provider),
                _provider_label(existing.provider),
            )
        self._bindings[key] = _ToolBinding(
            descriptor=descriptor.with_default_parameters(),
            provider=provider,
        )

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and wire_name(name) in self._bindings

    @property
    def descriptors(self) -> list[ToolDescriptor]:
        return [binding.descriptor for binding in self._bindings.values()]

    def names(self) -> Iterable[str]:
        return (binding.descriptor.name for binding in self._bindings.values())

    def get(self, name: str) -> ToolDescriptor | None:
        binding = self._bindings.get(wire_name(name))
        return binding.descriptor if binding is not None else None

    def provider_for(self, name: str) -> ToolProvider | None:
        binding = self._bindings.get(wire_name(name))
        return binding.provider if binding is not None else None

    def original_name(self, name: str) -> str | None:
        descriptor = self.get(name)
        return descriptor.name if descriptor is not None else None

    def openai_tools(self) -> list[dict[str, Any]]:
        return [
            binding.descriptor.to_openai_tool(name=key)
            for key, binding in self._bindings.items()
        ]


__all__ = ["ToolRegistry", "wire_name"]
