"""Error taxonomy for routing, transformation, and state persistence.

Routing and transformation errors are request-scoped and carry enough
context (scenario, provider, transformer name) to diagnose a bad
configuration.  ``StateStoreIOFailure`` never reaches the request path;
the state store logs it and recovers locally.
"""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base class for all Switchboard errors."""


class ConfigError(SwitchboardError):
    """Raised when configuration is malformed at load or startup time."""


class InvalidRouteString(SwitchboardError):
    """Raised when a ``"provider,model"`` route string cannot be parsed.

    Attributes:
        route: The offending route text.
    """

    def __init__(self, route: str) -> None:
        self.route = route
        super().__init__(f"Invalid route string {route!r}: expected 'provider,model'")


class NoRouteConfigured(SwitchboardError):
    """Raised when no scenario, including the default, yields a usable route.

    Attributes:
        scenarios: Scenario names that were evaluated, in priority order.
    """

    def __init__(self, scenarios: list[str]) -> None:
        self.scenarios = scenarios
        tried = ", ".join(scenarios) if scenarios else "none"
        super().__init__(f"No usable route configured (tried: {tried})")


class TransformationFailed(SwitchboardError):
    """Raised when a named transformer fails on a request or response.

    Attributes:
        transformer: Name of the transformer that failed.
        stage: ``"request"``, ``"response"``, or ``"stream"``.
        provider: Provider the pipeline was built for.
        model: Model the pipeline was built for.
    """

    def __init__(
        self,
        transformer: str,
        stage: str,
        *,
        provider: str = "",
        model: str = "",
        detail: str = "",
    ) -> None:
        self.transformer = transformer
        self.stage = stage
        self.provider = provider
        self.model = model
        self.detail = detail
        target = f" for {provider},{model}" if provider else ""
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Transformer '{transformer}' failed during {stage}{target}{suffix}")


class StateStoreIOFailure(SwitchboardError):
    """Raised internally when the routing state file cannot be read or written.

    Attributes:
        path: State file path involved in the failure.
    """

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        super().__init__(f"Routing state I/O failure at {path}: {detail}")
