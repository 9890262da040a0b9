"""Configuration management for Switchboard.

Handles the routing table, provider definitions and their transformer
chains, per-transformer options, and the routing state file location.
Configuration is loaded from a TOML file (~/.switchboard/config.toml)
with environment variable overrides, and validated at load time so a
malformed scenario entry fails fast instead of per request.

Typical usage::

    from switchboard.config import load_config

    config = load_config()
    route = config.router.route_for(Scenario.LONG_CONTEXT)
    provider = config.get_provider("deepseek")
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from switchboard.errors import ConfigError
from switchboard.types import Scenario

APP_DIR = Path.home() / ".switchboard"
CONFIG_PATH = APP_DIR / "config.toml"
STATE_PATH = APP_DIR / "routing-state.json"

DEFAULT_LONG_CONTEXT_THRESHOLD = 60000

STATE_FILE_ENV = "SWITCHBOARD_STATE_FILE"

# [router] key → scenario. longContextThreshold is handled separately.
_ROUTER_KEYS: dict[str, Scenario] = {scenario.value: scenario for scenario in Scenario}
_THRESHOLD_KEY = "longContextThreshold"

_PROVIDER_KEYS = {"api_base_url", "api_key", "models", "transformers", "model_transformers"}


@dataclass
class RouterConfig:
    """Scenario → route string table plus scenario parameters.

    Route values are kept as raw strings; the router parses them per
    decision so a bad non-default entry falls through instead of
    failing the whole table.

    Attributes:
        routes: Mapping of scenario to ``"provider,model"`` route string.
        long_context_threshold: Token count above which the long-context
            route is selected.
    """

    routes: dict[Scenario, str] = field(default_factory=dict)
    long_context_threshold: int = DEFAULT_LONG_CONTEXT_THRESHOLD

    def route_for(self, scenario: Scenario) -> str | None:
        """Get the configured route string for a scenario, if any."""
        return self.routes.get(scenario) or None


@dataclass
class ProviderConfig:
    """A provider backend and the transformers applied to its traffic.

    Attributes:
        name: Provider name used in route strings.
        api_base_url: Chat completions endpoint for the provider.
        api_key: Bearer token sent with requests. Empty for keyless backends.
        models: Models served by this provider.
        transformers: Transformer names applied to every model, in order.
        model_transformers: Extra transformer names per model, applied
            after the provider-wide chain.
    """

    name: str
    api_base_url: str = ""
    api_key: str = ""
    models: list[str] = field(default_factory=list)
    transformers: list[str] = field(default_factory=list)
    model_transformers: dict[str, list[str]] = field(default_factory=dict)

    def transformer_chain(self, model: str) -> list[str]:
        """Ordered transformer names for one model of this provider."""
        return [*self.transformers, *self.model_transformers.get(model, [])]


@dataclass
class Config:
    """Application configuration.

    Attributes:
        router: Scenario routing table.
        providers: Provider name → provider definition.
        transformer_options: Transformer name → constructor keyword options.
        state_path: Location of the persisted routing state document.
    """

    router: RouterConfig = field(default_factory=RouterConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    transformer_options: dict[str, dict[str, Any]] = field(default_factory=dict)
    state_path: Path = field(default_factory=lambda: STATE_PATH)

    def get_provider(self, name: str) -> ProviderConfig | None:
        """Look up a provider definition by name.

        Args:
            name: Provider name (e.g. "deepseek", "openrouter").

        Returns:
            The ProviderConfig, or None if the provider is not configured.
        """
        return self.providers.get(name)


def _table(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a table, got {value!r}")
    return value


def _parse_router(data: dict[str, Any]) -> RouterConfig:
    """Build a RouterConfig from the ``[router]`` table.

    Args:
        data: Parsed ``[router]`` TOML table.

    Returns:
        Validated RouterConfig.

    Raises:
        ConfigError: On unknown keys, non-string routes, or a bad threshold.
    """
    router = RouterConfig()
    for key, value in _table(data, "router").items():
        if key == _THRESHOLD_KEY:
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(
                    f"router.{_THRESHOLD_KEY} must be a positive integer, got {value!r}"
                )
            router.long_context_threshold = value
            continue
        scenario = _ROUTER_KEYS.get(key)
        if scenario is None:
            known = ", ".join([*_ROUTER_KEYS, _THRESHOLD_KEY])
            raise ConfigError(f"Unknown router entry '{key}'. Known entries: {known}.")
        if not isinstance(value, str):
            raise ConfigError(f"router.{key} must be a 'provider,model' string, got {value!r}")
        router.routes[scenario] = value
    return router


def _parse_provider(name: str, data: dict[str, Any]) -> ProviderConfig:
    """Build a ProviderConfig from one ``[providers.<name>]`` table.

    Raises:
        ConfigError: On unknown keys or wrongly typed transformer lists.
    """
    unknown = set(data) - _PROVIDER_KEYS
    if unknown:
        raise ConfigError(f"Unknown keys for provider '{name}': {', '.join(sorted(unknown))}")

    transformers = data.get("transformers", [])
    if not _is_str_list(transformers):
        raise ConfigError(f"providers.{name}.transformers must be a list of names")

    model_transformers: dict[str, list[str]] = {}
    per_model = _table(data.get("model_transformers", {}), f"providers.{name}.model_transformers")
    for model, names in per_model.items():
        if not _is_str_list(names):
            raise ConfigError(
                f"providers.{name}.model_transformers.{model} must be a list of names"
            )
        model_transformers[model] = list(names)

    models = data.get("models", [])
    if not _is_str_list(models):
        raise ConfigError(f"providers.{name}.models must be a list of model names")

    return ProviderConfig(
        name=name,
        api_base_url=str(data.get("api_base_url", "")),
        api_key=str(data.get("api_key", "")),
        models=list(models),
        transformers=list(transformers),
        model_transformers=model_transformers,
    )


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _apply_toml(config: Config, data: dict[str, Any]) -> None:
    """Apply parsed TOML data to a Config instance.

    Args:
        config: Config instance to populate.
        data: Parsed TOML dictionary.

    Raises:
        ConfigError: If any section is malformed.
    """
    # --- Router ---
    if "router" in data:
        config.router = _parse_router(data["router"])

    # --- Providers ---
    for name, table in _table(data.get("providers", {}), "providers").items():
        config.providers[name] = _parse_provider(name, _table(table, f"providers.{name}"))

    # --- Transformer options ---
    options_tables = _table(data.get("transformer_options", {}), "transformer_options")
    for name, options in options_tables.items():
        config.transformer_options[name] = dict(_table(options, f"transformer_options.{name}"))

    # --- State ---
    state = _table(data.get("state", {}), "state")
    if "path" in state:
        if not isinstance(state["path"], str):
            raise ConfigError(f"state.path must be a string, got {state['path']!r}")
        config.state_path = Path(state["path"]).expanduser()


def _provider_env_var(name: str) -> str:
    """Env var holding the API key for a provider (``deepseek`` → ``DEEPSEEK_API_KEY``)."""
    return f"{name.upper().replace('-', '_')}_API_KEY"


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to provider keys and state path.

    Args:
        config: Config instance to update.
    """
    for name, provider in config.providers.items():
        env_val = os.environ.get(_provider_env_var(name), "")
        if env_val:
            provider.api_key = env_val

    state_file = os.environ.get(STATE_FILE_ENV, "")
    if state_file:
        config.state_path = Path(state_file).expanduser()


def load_config(path: Path | None = None, *, apply_env: bool = True) -> Config:
    """Load configuration from file and environment.

    Resolution order for the state file path:
        1. SWITCHBOARD_STATE_FILE environment variable
        2. [state].path in config.toml
        3. ~/.switchboard/routing-state.json

    Args:
        path: Config file to read. Defaults to CONFIG_PATH.
        apply_env: Apply environment variable overrides. Disable when the
            result will be written back, so env-sourced values stay out
            of the file.

    Returns:
        Populated Config instance. Defaults when the file does not exist.

    Raises:
        ConfigError: If the file is not valid TOML or a section is malformed.
    """
    target = path or CONFIG_PATH
    config = Config()

    if target.exists():
        try:
            with open(target, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Cannot parse {target}: {exc}") from exc
        _apply_toml(config, data)

    if apply_env:
        _apply_env_overrides(config)

    return config


def write_config(config: Config, path: Path | None = None) -> None:
    """Serialize a Config to TOML and write to disk.

    Pass a Config loaded with ``apply_env=False`` so keys exported in the
    shell are never persisted to the file.

    If the file already exists, its permissions are preserved after write.

    Args:
        config: Config instance to serialize.
        path: File path to write. Defaults to CONFIG_PATH.
    """
    import tomlkit

    target = path or CONFIG_PATH

    existing_mode: int | None = None
    if target.exists():
        existing_mode = target.stat().st_mode & 0o777

    doc = tomlkit.document()

    # --- Router ---
    router_table = tomlkit.table()
    for scenario in Scenario:
        route = config.router.routes.get(scenario)
        if route:
            router_table.add(scenario.value, route)
    router_table.add(_THRESHOLD_KEY, config.router.long_context_threshold)
    doc.add("router", router_table)

    # --- Providers ---
    providers_table = tomlkit.table()
    for name, provider in sorted(config.providers.items()):
        sub = tomlkit.table()
        if provider.api_base_url:
            sub.add("api_base_url", provider.api_base_url)
        if provider.api_key:
            sub.add("api_key", provider.api_key)
        sub.add("models", provider.models)
        sub.add("transformers", provider.transformers)
        if provider.model_transformers:
            per_model = tomlkit.table()
            for model, names in sorted(provider.model_transformers.items()):
                per_model.add(model, names)
            sub.add("model_transformers", per_model)
        providers_table.add(name, sub)
    doc.add("providers", providers_table)

    # --- Transformer options ---
    if config.transformer_options:
        options_table = tomlkit.table()
        for name, options in sorted(config.transformer_options.items()):
            sub = tomlkit.table()
            for key, value in sorted(options.items()):
                sub.add(key, value)
            options_table.add(name, sub)
        doc.add("transformer_options", options_table)

    # --- State ---
    state_table = tomlkit.table()
    state_table.add("path", str(config.state_path))
    doc.add("state", state_table)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(tomlkit.dumps(doc), encoding="utf-8")

    if existing_mode is not None:
        target.chmod(existing_mode)
