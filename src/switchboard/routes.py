"""Route string codec.

Routes are written throughout config and state as ``"provider,model"``.
Only the first comma separates the parts: model identifiers may contain
commas of their own, so everything after the first comma is the model.

Typical usage::

    from switchboard.routes import format_route, parse_route

    target = parse_route("openrouter,anthropic/claude-sonnet-4.5")
    assert format_route(target) == "openrouter,anthropic/claude-sonnet-4.5"
"""

from __future__ import annotations

from switchboard.errors import InvalidRouteString
from switchboard.types import RouteTarget

SEPARATOR = ","


def parse_route(route: str | None) -> RouteTarget | None:
    """Parse a route string into a provider/model pair.

    Args:
        route: Text of the form ``"provider,model"``, or None.

    Returns:
        The parsed ``RouteTarget``, or None if the text has no separator.
    """
    if not route:
        return None
    provider, sep, model = route.partition(SEPARATOR)
    if not sep:
        return None
    return RouteTarget(provider=provider, model=model)


def require_route(route: str | None) -> RouteTarget:
    """Parse a route string, raising instead of returning None.

    Raises:
        InvalidRouteString: If the text is not a valid route.
    """
    target = parse_route(route)
    if target is None:
        raise InvalidRouteString(route or "")
    return target


def format_route(target: RouteTarget) -> str:
    """Serialize a provider/model pair back to its route string."""
    return f"{target.provider}{SEPARATOR}{target.model}"
