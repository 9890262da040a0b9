"""Tests for the ScenarioRouter.

Covers: scenario priority order, long-context threshold handling (default
and configured), fall-through past malformed routes, NoRouteConfigured
when the default is unusable, reason text, signal estimation when none
are given, and decision logging.
"""

from __future__ import annotations

import logging

import pytest

from switchboard.config import RouterConfig
from switchboard.errors import NoRouteConfigured
from switchboard.router import ScenarioRouter
from switchboard.types import RequestSignals, Scenario, UnifiedChatRequest

ROUTER_LOGGER = "switchboard.router"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _full_config(**overrides: str) -> RouterConfig:
    """RouterConfig with every scenario routed to a distinct model."""
    routes = {
        Scenario.DEFAULT: "openai,gpt-4",
        Scenario.BACKGROUND: "ollama,qwen2.5-coder",
        Scenario.THINK: "deepseek,deepseek-reasoner",
        Scenario.LONG_CONTEXT: "openai,gpt-4-128k",
        Scenario.WEB_SEARCH: "openrouter,perplexity/sonar",
    }
    for key, value in overrides.items():
        routes[Scenario(key)] = value
    return RouterConfig(routes=routes)


def _request(model: str = "claude-sonnet-4") -> UnifiedChatRequest:
    return UnifiedChatRequest(model=model, messages=[{"role": "user", "content": "hello"}])


ALL_FLAGS = {"background": True, "think": True, "web_search": True}


# ---------------------------------------------------------------------------
# Priority order
# ---------------------------------------------------------------------------


class TestPriorityOrder:
    """First matching scenario with a usable route wins."""

    def test_no_flags_selects_default(self) -> None:
        decision = ScenarioRouter(_full_config()).route(_request(), RequestSignals(input_tokens=10))
        assert decision.scenario is Scenario.DEFAULT
        assert (decision.provider, decision.model) == ("openai", "gpt-4")
        assert decision.reason == "default route"

    def test_long_context_beats_all_flags(self) -> None:
        signals = RequestSignals(input_tokens=72000, **ALL_FLAGS)
        decision = ScenarioRouter(_full_config()).route(_request(), signals)
        assert decision.scenario is Scenario.LONG_CONTEXT
        assert decision.model == "gpt-4-128k"

    def test_background_beats_think_and_search(self) -> None:
        signals = RequestSignals(input_tokens=100, **ALL_FLAGS)
        decision = ScenarioRouter(_full_config()).route(_request(), signals)
        assert decision.scenario is Scenario.BACKGROUND
        assert decision.provider == "ollama"

    def test_think_beats_search(self) -> None:
        signals = RequestSignals(think=True, web_search=True)
        decision = ScenarioRouter(_full_config()).route(_request(), signals)
        assert decision.scenario is Scenario.THINK
        assert decision.model == "deepseek-reasoner"

    def test_web_search(self) -> None:
        decision = ScenarioRouter(_full_config()).route(_request(), RequestSignals(web_search=True))
        assert decision.scenario is Scenario.WEB_SEARCH
        assert decision.model == "perplexity/sonar"

    def test_flag_without_route_falls_to_default(self) -> None:
        config = RouterConfig(routes={Scenario.DEFAULT: "openai,gpt-4"})
        decision = ScenarioRouter(config).route(_request(), RequestSignals(think=True))
        assert decision.scenario is Scenario.DEFAULT


# ---------------------------------------------------------------------------
# Long-context threshold
# ---------------------------------------------------------------------------


class TestLongContextThreshold:
    """Tokens must strictly exceed the threshold."""

    def test_default_threshold_is_60000(self) -> None:
        router = ScenarioRouter(_full_config())
        at = router.route(_request(), RequestSignals(input_tokens=60000))
        over = router.route(_request(), RequestSignals(input_tokens=60001))
        assert at.scenario is Scenario.DEFAULT
        assert over.scenario is Scenario.LONG_CONTEXT

    def test_configured_threshold(self) -> None:
        config = _full_config()
        config.long_context_threshold = 1000
        decision = ScenarioRouter(config).route(_request(), RequestSignals(input_tokens=1500))
        assert decision.scenario is Scenario.LONG_CONTEXT
        assert "1000" in decision.reason

    def test_no_long_context_route_ignores_threshold(self) -> None:
        config = RouterConfig(routes={Scenario.DEFAULT: "openai,gpt-4"})
        decision = ScenarioRouter(config).route(_request(), RequestSignals(input_tokens=500000))
        assert decision.scenario is Scenario.DEFAULT
        assert decision.input_tokens == 500000

    def test_end_to_end_long_context_decision(self) -> None:
        config = RouterConfig(
            routes={
                Scenario.DEFAULT: "openai,gpt-4",
                Scenario.LONG_CONTEXT: "openai,gpt-4-128k",
            },
            long_context_threshold=60000,
        )
        decision = ScenarioRouter(config).route(_request(), RequestSignals(input_tokens=72000))
        assert decision.provider == "openai"
        assert decision.model == "gpt-4-128k"
        assert decision.scenario is Scenario.LONG_CONTEXT
        assert "60000" in decision.reason
        assert decision.reason == "token count 72000 exceeds longContext threshold 60000"
        assert decision.input_tokens == 72000


# ---------------------------------------------------------------------------
# Malformed routes
# ---------------------------------------------------------------------------


class TestFallThrough:
    """Unparseable routes fall through to the next candidate."""

    def test_invalid_long_context_falls_to_think(self) -> None:
        config = _full_config(longContext="nocomma")
        signals = RequestSignals(input_tokens=90000, think=True)
        decision = ScenarioRouter(config).route(_request(), signals)
        assert decision.scenario is Scenario.THINK
        assert "longContext" in decision.reason

    def test_invalid_think_falls_to_default(self) -> None:
        config = _full_config(think="broken")
        decision = ScenarioRouter(config).route(_request(), RequestSignals(think=True))
        assert decision.scenario is Scenario.DEFAULT

    def test_fall_through_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        config = _full_config(think="broken")
        with caplog.at_level(logging.WARNING, logger=ROUTER_LOGGER):
            ScenarioRouter(config).route(_request(), RequestSignals(think=True))
        assert "think" in caplog.text
        assert "broken" in caplog.text

    def test_invalid_default_raises(self) -> None:
        config = RouterConfig(routes={Scenario.DEFAULT: "nocomma"})
        with pytest.raises(NoRouteConfigured) as exc_info:
            ScenarioRouter(config).route(_request(), RequestSignals())
        assert exc_info.value.scenarios == ["default"]

    def test_missing_default_raises_even_with_other_candidates(self) -> None:
        config = RouterConfig(routes={Scenario.THINK: "bad"})
        with pytest.raises(NoRouteConfigured, match="think, default"):
            ScenarioRouter(config).route(_request(), RequestSignals(think=True))

    def test_empty_config_raises(self) -> None:
        with pytest.raises(NoRouteConfigured):
            ScenarioRouter(RouterConfig()).route(_request(), RequestSignals())


# ---------------------------------------------------------------------------
# Signals and logging
# ---------------------------------------------------------------------------


class TestSignalsAndLogging:
    """Router estimates signals when none are given and logs decisions."""

    def test_estimates_signals_when_omitted(self) -> None:
        request = UnifiedChatRequest(
            model="claude-3-5-haiku",
            messages=[{"role": "user", "content": "title this"}],
        )
        decision = ScenarioRouter(_full_config()).route(request)
        assert decision.scenario is Scenario.BACKGROUND

    def test_decision_logged_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger=ROUTER_LOGGER):
            ScenarioRouter(_full_config()).route(_request(), RequestSignals(input_tokens=5))
        assert "openai,gpt-4" in caplog.text
        assert "default route" in caplog.text

    def test_config_property(self) -> None:
        config = _full_config()
        assert ScenarioRouter(config).config is config
