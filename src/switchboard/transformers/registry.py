"""Transformer registry.

Maps the transformer names used in config to transformer classes and
builds configured instances.  ``validate()`` runs at startup so an
unknown name or bad option table is a configuration error there, not a
failure on some later request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from switchboard.config import Config
from switchboard.errors import ConfigError
from switchboard.transformers.base import Transformer
from switchboard.transformers.reasoning import ReasoningContentTransformer
from switchboard.transformers.request import CleanCacheTransformer, MaxTokenTransformer

logger = logging.getLogger(__name__)

BUILTIN_TRANSFORMERS: tuple[type[Transformer], ...] = (
    ReasoningContentTransformer,
    MaxTokenTransformer,
    CleanCacheTransformer,
)


class TransformerRegistry:
    """Name → transformer class lookup.

    Args:
        transformers: Classes to register. Defaults to the built-ins.
    """

    def __init__(self, transformers: Iterable[type[Transformer]] | None = None) -> None:
        self._classes: dict[str, type[Transformer]] = {}
        for cls in BUILTIN_TRANSFORMERS if transformers is None else transformers:
            self.register(cls)

    def register(self, cls: type[Transformer]) -> None:
        """Register a transformer class under its ``name``.

        Raises:
            ValueError: If the class has no name or the name is taken.
        """
        if not cls.name:
            raise ValueError(f"{cls.__name__} does not define a transformer name")
        if cls.name in self._classes:
            raise ValueError(f"Transformer '{cls.name}' is already registered")
        self._classes[cls.name] = cls

    def names(self) -> list[str]:
        return sorted(self._classes)

    def create(self, name: str, options: dict[str, Any] | None = None) -> Transformer:
        """Instantiate a registered transformer.

        Args:
            name: Registered transformer name.
            options: Constructor keyword arguments.

        Returns:
            A configured transformer instance.

        Raises:
            ConfigError: If the name is unknown or the options are rejected.
        """
        cls = self._classes.get(name)
        if cls is None:
            raise ConfigError(
                f"Unknown transformer '{name}'. Known transformers: {', '.join(self.names())}."
            )
        try:
            return cls(**(options or {}))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid options for transformer '{name}': {exc}") from exc

    def resolve(
        self,
        names: list[str],
        options: dict[str, dict[str, Any]] | None = None,
    ) -> list[Transformer]:
        """Instantiate an ordered chain of transformers.

        Args:
            names: Transformer names in application order.
            options: Transformer name → constructor options.

        Returns:
            Transformer instances in the same order as *names*.
        """
        opts = options or {}
        return [self.create(name, opts.get(name)) for name in names]

    def validate(self, config: Config) -> None:
        """Check every transformer chain in a config can be built.

        Args:
            config: Loaded configuration.

        Raises:
            ConfigError: On the first unknown name or invalid option table.
        """
        for provider in config.providers.values():
            models = set(provider.models) | set(provider.model_transformers)
            chains = [provider.transformers]
            chains.extend(provider.transformer_chain(model) for model in sorted(models))
            for chain in chains:
                try:
                    self.resolve(chain, config.transformer_options)
                except ConfigError as exc:
                    raise ConfigError(f"Provider '{provider.name}': {exc}") from exc
        logger.debug("Validated transformer chains for %d providers", len(config.providers))
