from dataclasses import dataclass
from typing import Any, Callable

from playwright.sync_api import Error, TimeoutError as PlaywrightTimeoutError

from .errors import NotFound
from .log import log_debug, log_info, log_warn
from .targets import Strategy, strategies_for

# Playwright phrasing for "something is on top of it" / "can't scroll to it"
_OCCLUSION_MARKERS = ("intercepts pointer events", "viewport")


def _first_line(e: Exception) -> str:
    lines = str(e).strip().splitlines()
    return lines[0] if lines else type(e).__name__


def _is_occlusion(e: Exception) -> bool:
    detail = str(e)
    return any(m in detail for m in _OCCLUSION_MARKERS)


@dataclass(frozen=True)
class Match:
    name: str
    strategy: Strategy
    index: int
    locator: Any

    @property
    def fallback(self) -> bool:
        return self.index > 0


class ElementLocator:
    """
    Turns a logical name ("serial_number", "affirm", …) into a live element by
    walking its strategy list in priority order.
    """

    def __init__(self, session, candidate_timeout_ms: int = 5000):
        self.session = session
        self.candidate_timeout_ms = candidate_timeout_ms
        self.resolved: dict[str, Match] = {}

    @property
    def page(self):
        return self.session.page

    def _strategies(self, name: str, strategies) -> tuple[Strategy, ...]:
        return tuple(strategies) if strategies is not None else strategies_for(name)

    def _ready(self, loc, timeout_ms: int, require_enabled: bool) -> bool:
        try:
            loc.wait_for(state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        if not loc.is_visible():
            return False
        if require_enabled and not loc.is_enabled():
            return False
        return True

    def _record(self, name: str, strategy: Strategy, index: int, loc) -> Match:
        match = Match(name, strategy, index, loc)
        self.resolved[name] = match
        if index:
            log_info(f">>> “{name}” matched fallback #{index}: {strategy.describe()}")
        else:
            log_debug(f">>> “{name}” matched: {strategy.describe()}")
        return match

    def _give_up(self, name: str, tried: list[str]):
        shot = self.session.screenshot(f"error_{name}", error=True)
        raise NotFound(name, tried, screenshot=shot)

    def locate(self, name: str, strategies=None, *, timeout_ms: int | None = None,
               require_enabled: bool = False) -> Match:
        timeout = self.candidate_timeout_ms if timeout_ms is None else timeout_ms
        tried: list[str] = []
        for i, strat in enumerate(self._strategies(name, strategies)):
            tried.append(strat.describe())
            loc = strat.resolve(self.page)
            if self._ready(loc, timeout, require_enabled):
                return self._record(name, strat, i, loc)
        self._give_up(name, tried)

    def act(self, name: str, action: Callable[[Any, bool], Any], strategies=None, *,
            timeout_ms: int | None = None, require_enabled: bool = True) -> tuple[Match, Any]:
        """
        Locate and interact in one go. `action(locator, force)` performs the
        interaction. An occluded/off-viewport candidate gets one forced retry
        before the next strategy is tried.
        """
        timeout = self.candidate_timeout_ms if timeout_ms is None else timeout_ms
        tried: list[str] = []
        for i, strat in enumerate(self._strategies(name, strategies)):
            tried.append(strat.describe())
            loc = strat.resolve(self.page)
            if not self._ready(loc, timeout, require_enabled):
                continue
            try:
                out = action(loc, False)
            except Error as e:
                if not _is_occlusion(e):
                    log_warn(f">>> “{name}” via {strat.describe()} failed: {_first_line(e)}")
                    continue
                log_warn(f">>> “{name}” is covered or off-screen; forcing the interaction")
                try:
                    out = action(loc, True)
                except Error as e2:
                    log_warn(f">>> Forced interaction on “{name}” failed: {_first_line(e2)}")
                    continue
            return self._record(name, strat, i, loc), out
        self._give_up(name, tried)

    def probe(self, name: str, strategies=None) -> Match | None:
        """Instant visibility check, no waiting. None when nothing is showing."""
        for i, strat in enumerate(self._strategies(name, strategies)):
            loc = strat.resolve(self.page)
            try:
                if loc.is_visible():
                    return Match(name, strat, i, loc)
            except Error:
                continue
        return None
