"""Scenario router.

Maps one inbound request to exactly one ``RouteDecision``.  Scenarios are
checked in a fixed priority order and the first one that both matches
and has a usable route wins:

1. longContext: estimated tokens exceed the configured threshold
2. background: request classified as a background task
3. think: request asks for extended reasoning
4. webSearch: request carries a web search tool
5. default

A matching scenario whose route string does not parse falls through to
the next candidate.  If the default route is missing or malformed the
router raises ``NoRouteConfigured`` rather than inventing a provider.
"""

from __future__ import annotations

import logging

from switchboard.config import RouterConfig
from switchboard.errors import NoRouteConfigured
from switchboard.routes import parse_route
from switchboard.signals import estimate_signals
from switchboard.types import RequestSignals, RouteDecision, Scenario, UnifiedChatRequest

logger = logging.getLogger(__name__)


class ScenarioRouter:
    """Selects a provider/model pair per request from a routing table.

    Args:
        config: Scenario routing table. Treated as immutable for the
            lifetime of each decision.

    Example::

        router = ScenarioRouter(config.router)
        decision = router.route(request, RequestSignals(input_tokens=72000))
        print(decision.provider, decision.model, decision.reason)
    """

    def __init__(self, config: RouterConfig) -> None:
        self._config = config

    @property
    def config(self) -> RouterConfig:
        return self._config

    def route(
        self,
        request: UnifiedChatRequest,
        signals: RequestSignals | None = None,
    ) -> RouteDecision:
        """Pick the route for a request.

        Args:
            request: The unified chat request being routed.
            signals: Classifier output. Estimated from the request when omitted.

        Returns:
            An immutable RouteDecision.

        Raises:
            NoRouteConfigured: If no candidate, including the default,
                has a parseable route.
        """
        if signals is None:
            signals = estimate_signals(request)

        skipped: list[str] = []
        evaluated: list[str] = []
        for scenario, reason in self._candidates(signals):
            evaluated.append(scenario.value)
            route = self._config.route_for(scenario)
            target = parse_route(route)
            if target is None:
                logger.warning(
                    "Route for scenario %s is not a valid 'provider,model' string: %r",
                    scenario.value,
                    route,
                )
                skipped.append(scenario.value)
                continue

            if skipped:
                reason = f"{reason} (skipped invalid route for {', '.join(skipped)})"
            decision = RouteDecision(
                provider=target.provider,
                model=target.model,
                scenario=scenario,
                reason=reason,
                input_tokens=signals.input_tokens,
            )
            logger.info(
                "Routed %s request (%d tokens) to %s: %s",
                request.model or "unnamed",
                signals.input_tokens,
                target.route,
                reason,
            )
            return decision

        raise NoRouteConfigured(evaluated)

    def _candidates(self, signals: RequestSignals) -> list[tuple[Scenario, str]]:
        """Scenarios that match the signals, highest priority first, default last."""
        config = self._config
        candidates: list[tuple[Scenario, str]] = []

        threshold = config.long_context_threshold
        if config.route_for(Scenario.LONG_CONTEXT) and signals.input_tokens > threshold:
            candidates.append(
                (
                    Scenario.LONG_CONTEXT,
                    f"token count {signals.input_tokens} exceeds longContext threshold {threshold}",
                )
            )
        if signals.background and config.route_for(Scenario.BACKGROUND):
            candidates.append((Scenario.BACKGROUND, "request classified as background task"))
        if signals.think and config.route_for(Scenario.THINK):
            candidates.append((Scenario.THINK, "request asks for extended reasoning"))
        if signals.web_search and config.route_for(Scenario.WEB_SEARCH):
            candidates.append((Scenario.WEB_SEARCH, "request uses a web search tool"))

        candidates.append((Scenario.DEFAULT, "default route"))
        return candidates
