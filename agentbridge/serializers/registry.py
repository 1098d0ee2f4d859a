"""Serializer registry for agentbridge.

Provides a central lookup for the wire protocols by name. Custom serializers
can be registered at runtime, e.g. to talk to a different agent backend.
"""

from __future__ import annotations

from typing import Type

from loguru import logger

from agentbridge.serializers.base import BaseSerializer


class SerializerRegistry:
    """Registry mapping protocol names to serializer classes.

    Usage:
        registry = SerializerRegistry()
        serializer = registry.create("twilio")
    """

    def __init__(self) -> None:
        self._registry: dict[str, Type[BaseSerializer]] = {}
        self._loaded = False

    def _load_builtins(self) -> None:
        if self._loaded:
            return

        from agentbridge.serializers.elevenlabs import ElevenLabsSerializer
        from agentbridge.serializers.twilio import TwilioSerializer

        self._registry.setdefault("twilio", TwilioSerializer)
        self._registry.setdefault("elevenlabs", ElevenLabsSerializer)
        self._loaded = True

    def register(self, name: str, cls: Type[BaseSerializer]) -> None:
        """Register a custom serializer class under ``name``."""
        if not issubclass(cls, BaseSerializer):
            raise TypeError(f"{cls} is not a subclass of BaseSerializer")
        self._registry[name] = cls
        logger.debug(f"Registered custom serializer: {name}")

    def get(self, name: str) -> Type[BaseSerializer]:
        """Get a serializer class by name.

        Raises:
            KeyError: If no serializer is registered for the given name.
        """
        self._load_builtins()
        if name not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"No serializer registered for '{name}'. Available: {available}")
        return self._registry[name]

    def create(self, name: str, **kwargs) -> BaseSerializer:
        return self.get(name)(**kwargs)

    @property
    def available(self) -> list[str]:
        self._load_builtins()
        return sorted(self._registry)


# Global singleton
serializer_registry = SerializerRegistry()
