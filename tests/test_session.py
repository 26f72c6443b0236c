import asyncio
import random

import pytest
from playwright.async_api import Error as PlaywrightError

from src.scraper import session as session_module
from src.scraper.errors import BotCheckTriggered, NavigationExhausted, SessionFailure
from src.scraper.session import BrowserSession, SessionManager, is_bot_check_url, is_maps_url
from tests.fakes import FakeCloseable, FakeNode, FakePage, RecordingSleep, no_sleep


def _manager(**kwargs) -> SessionManager:
    kwargs.setdefault("rng", random.Random(3))
    kwargs.setdefault("sleep", no_sleep)
    return SessionManager(**kwargs)


def _session(page: FakePage, **kwargs) -> BrowserSession:
    return BrowserSession(page=page, user_agent="test-agent", viewport={"width": 1920, "height": 1080}, **kwargs)


def test_navigate_falls_through_to_next_url_template() -> None:
    page = FakePage()

    def handler(url: str) -> str:
        if len(page.visited) == 1:
            raise PlaywrightError("net::ERR_CONNECTION_RESET")
        return url

    page.goto_handler = handler

    assert asyncio.run(_manager().navigate(_session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4")) is True
    assert len(page.visited) == 2
    assert page.visited[1] == "https://maps.google.com/maps?q=place_id:ChIJN1t_tDeuEmsRUsoyG83frY4"


def test_navigate_raises_when_no_template_reaches_maps() -> None:
    page = FakePage()
    page.goto_handler = lambda url: "https://www.example.com/"

    with pytest.raises(NavigationExhausted, match="Navigation failed"):
        asyncio.run(_manager().navigate(_session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4"))

    assert len(page.visited) == 3


def test_navigate_accepts_consent_interstitial() -> None:
    page = FakePage()

    def accept() -> None:
        page.url = "https://www.google.com/maps/place/Cafe"

    accept_button = FakeNode("Accept all", on_click=accept)
    page.nodes["form[action*='consent'] button[aria-label*='Accept' i]"] = [accept_button]
    page.goto_handler = lambda url: "https://consent.google.com/ml?continue=" + url

    assert asyncio.run(_manager().navigate(_session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4")) is True
    assert accept_button.clicks == 1
    assert len(page.visited) == 1


def test_navigation_delay_is_within_configured_window() -> None:
    sleep = RecordingSleep()
    page = FakePage()

    asyncio.run(
        _manager(sleep=sleep, navigation_min_delay_ms=2000, navigation_max_delay_ms=4000).navigate(
            _session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4"
        )
    )

    assert len(sleep.delays) == 1
    assert 2.0 <= sleep.delays[0] <= 4.0


def test_close_is_idempotent_and_swallows_release_errors() -> None:
    context = FakeCloseable(fail=True)
    browser = FakeCloseable()
    playwright = FakeCloseable()
    session = _session(FakePage(), context=context, browser=browser, playwright=playwright)
    manager = _manager()

    asyncio.run(manager.close(session))
    asyncio.run(manager.close(session))

    assert session.closed is True
    assert (context.calls, browser.calls, playwright.calls) == (1, 1, 1)


def test_launch_failure_becomes_session_failure(monkeypatch) -> None:
    class BrokenPlaywright:
        async def start(self):
            raise PlaywrightError("Executable doesn't exist at /ms-playwright/chromium")

    monkeypatch.setattr(session_module, "async_playwright", lambda: BrokenPlaywright())

    with pytest.raises(SessionFailure, match="Browser launch failed"):
        asyncio.run(_manager().launch())


class _FakeRequest:
    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type


class _FakeRoute:
    def __init__(self, resource_type: str) -> None:
        self.request = _FakeRequest(resource_type)
        self.outcome: str | None = None

    async def abort(self) -> None:
        self.outcome = "aborted"

    async def continue_(self) -> None:
        self.outcome = "continued"


def test_heavy_resources_are_blocked() -> None:
    manager = _manager(blocked_resource_types=["image", "font"])
    routes = {kind: _FakeRoute(kind) for kind in ("image", "font", "document", "xhr")}

    async def scenario() -> None:
        for route in routes.values():
            await manager._route_request(route)

    asyncio.run(scenario())

    assert {kind: route.outcome for kind, route in routes.items()} == {
        "image": "aborted",
        "font": "aborted",
        "document": "continued",
        "xhr": "continued",
    }


def test_screenshot_is_skipped_outside_debug_mode() -> None:
    assert asyncio.run(_manager(debug=False).screenshot(_session(FakePage()), "after_navigation")) is None


def test_consent_page_without_accept_button_is_not_a_landing() -> None:
    page = FakePage()
    page.goto_handler = lambda url: "https://consent.google.com/ml?continue=" + url

    with pytest.raises(NavigationExhausted):
        asyncio.run(_manager().navigate(_session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4"))

    assert len(page.visited) == 3
    assert page.url.startswith("https://consent.google.com/")


def test_sorry_redirect_during_navigation_is_a_bot_check() -> None:
    page = FakePage()
    page.goto_handler = lambda url: "https://www.google.com/sorry/index?continue=" + url

    with pytest.raises(BotCheckTriggered):
        asyncio.run(_manager().navigate(_session(page), "ChIJN1t_tDeuEmsRUsoyG83frY4"))

    assert len(page.visited) == 1


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://www.google.com/maps/place/Sydney+Opera+House", True),
        ("https://maps.google.com/maps?q=place_id:ChIJN1t_tDeuEmsRUsoyG83frY4", True),
        ("https://www.google.co.uk/maps/search/?api=1&query=place_id:abc", True),
        ("https://consent.google.com/ml?continue=https://www.google.com/maps/place/", False),
        ("https://www.google.com/sorry/index?continue=https://www.google.com/maps", False),
        ("https://www.example.com/google.com/maps", False),
        ("about:blank", False),
        (None, False),
    ],
)
def test_is_maps_url_checks_host_and_path(url, expected: bool) -> None:
    assert is_maps_url(url) is expected


def test_is_bot_check_url_ignores_query_string() -> None:
    assert is_bot_check_url("https://www.google.com/sorry/index?continue=x") is True
    assert is_bot_check_url("https://www.google.com/maps/place/?q=/sorry/") is False
