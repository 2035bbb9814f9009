"""Step runner for browser flows, driven through a swappable automation driver."""

from __future__ import annotations

import abc
import base64
import contextlib
import json
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from flowwatch.core import actions
from flowwatch.core.config import RunnerConfig
from flowwatch.core.types import FlowDefinition, StepDefinition
from flowwatch.runner.base import BaseStepRunner, StepOutcome, log_time
from flowwatch.runner.exceptions import StepAssertionError, StepError
from flowwatch.runner.templating import render_template

logger = structlog.stdlib.get_logger()

_LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


def url_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a URL pattern where ``*`` matches anything."""
    return re.compile(pattern.replace("*", ".*"))


class BrowserDriver(abc.ABC):
    """UI-automation primitives used by :class:`BrowserStepRunner`.

    Timeouts are in milliseconds. Failures raise; the runner turns any
    exception into a failed step.
    """

    @abc.abstractmethod
    async def goto(self, url: str, timeout_ms: int) -> int | None:
        """Navigate and wait for the network to settle. Returns the HTTP status."""

    @abc.abstractmethod
    async def wait_for_visible(self, selector: str, timeout_ms: int) -> None: ...

    @abc.abstractmethod
    async def click(self, selector: str) -> None: ...

    @abc.abstractmethod
    async def fill(self, selector: str, value: str) -> None: ...

    @abc.abstractmethod
    async def select(self, selector: str, value: str) -> None: ...

    @abc.abstractmethod
    async def hover(self, selector: str) -> None: ...

    @abc.abstractmethod
    async def press(self, selector: str, key: str) -> None: ...

    @abc.abstractmethod
    async def wait_for_url(self, pattern: str, timeout_ms: int) -> None: ...

    @abc.abstractmethod
    async def text_content(self, selector: str) -> str | None: ...

    @abc.abstractmethod
    def current_url(self) -> str: ...

    @abc.abstractmethod
    async def evaluate(self, script: str) -> Any: ...

    @abc.abstractmethod
    async def screenshot(self) -> bytes: ...

    @abc.abstractmethod
    def drain_errors(self) -> list[str]:
        """Return and clear page errors observed since the last call."""

    @abc.abstractmethod
    async def close(self) -> None: ...


class PlaywrightDriver(BrowserDriver):
    """Headless Chromium through Playwright's async API.

    Usage::

        driver = await PlaywrightDriver.launch(config)
        try:
            await driver.goto("https://example.com", 15000)
        finally:
            await driver.close()
    """

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._errors: list[str] = []
        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)

    @classmethod
    async def launch(cls, config: RunnerConfig) -> PlaywrightDriver:
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.launch(
                headless=config.browser_headless, args=_LAUNCH_ARGS
            )
            context = await browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height},
                user_agent=config.user_agent,
            )
            page = await context.new_page()
        except Exception:
            await pw.stop()
            raise
        return cls(pw, browser, context, page)

    def _on_console(self, msg: ConsoleMessage) -> None:
        if msg.type == "error":
            self._errors.append(f"[console] {msg.text}")

    def _on_page_error(self, error: PlaywrightError) -> None:
        self._errors.append(f"[pageerror] {error.message}")

    async def goto(self, url: str, timeout_ms: int) -> int | None:
        response = await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        return response.status if response is not None else None

    async def wait_for_visible(self, selector: str, timeout_ms: int) -> None:
        await self._page.wait_for_selector(selector, state="visible", timeout=timeout_ms)

    async def click(self, selector: str) -> None:
        await self._page.click(selector)

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def select(self, selector: str, value: str) -> None:
        await self._page.select_option(selector, value)

    async def hover(self, selector: str) -> None:
        await self._page.hover(selector)

    async def press(self, selector: str, key: str) -> None:
        await self._page.press(selector, key)

    async def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        await self._page.wait_for_url(url_pattern(pattern), timeout=timeout_ms)

    async def text_content(self, selector: str) -> str | None:
        return await self._page.text_content(selector)

    def current_url(self) -> str:
        return self._page.url

    async def evaluate(self, script: str) -> Any:
        return await self._page.evaluate(script)

    async def screenshot(self) -> bytes:
        return await self._page.screenshot(type="png", full_page=False)

    def drain_errors(self) -> list[str]:
        errors, self._errors = self._errors, []
        return errors

    async def close(self) -> None:
        try:
            await self._context.close()
            await self._browser.close()
        finally:
            await self._playwright.stop()


DriverFactory = Callable[[RunnerConfig], Awaitable[BrowserDriver]]


class BrowserStepRunner(BaseStepRunner):
    """Executes browser actions against one page per run.

    A screenshot is taken after every executed step. Page errors observed
    between steps are prepended to the next step's log. Unknown action
    kinds are logged and pass as no-ops.

    Args:
        config: Runner settings (browser timeout, viewport, headless).
        driver_factory: Coroutine creating a driver; defaults to Playwright.
    """

    kind = "browser"

    def __init__(
        self,
        config: RunnerConfig | None = None,
        driver_factory: DriverFactory | None = None,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock=clock, now=now)
        self._config = config or RunnerConfig()
        self._driver_factory = driver_factory or PlaywrightDriver.launch

    @contextlib.asynccontextmanager
    async def _session(self, flow: FlowDefinition) -> AsyncIterator[BrowserDriver]:
        driver = await self._driver_factory(self._config)
        try:
            yield driver
        finally:
            try:
                await driver.close()
            except Exception:
                logger.exception("browser_close_failed", flow_id=flow.id)

    def _preamble(self, session: BrowserDriver) -> list[str]:
        return session.drain_errors()

    async def _capture(self, session: BrowserDriver, logs: list[str]) -> str | None:
        try:
            png = await session.screenshot()
        except Exception as exc:
            logs.append(f"Screenshot failed: {exc}")
            return None
        return base64.b64encode(png).decode("ascii")

    async def _execute_step(
        self,
        session: BrowserDriver,
        flow: FlowDefinition,
        step: StepDefinition,
        ctx: dict[str, Any],
        logs: list[str],
    ) -> StepOutcome | None:
        action = step.action
        name = getattr(action, "action", "navigate")
        logs.append(f"[{log_time()}] Step {step.position}: {step.name} ({name})")
        outcome = await self._perform(session, flow, action, ctx, logs)
        logs.append(f"[{log_time()}] Completed")
        return outcome

    async def _perform(
        self,
        driver: BrowserDriver,
        flow: FlowDefinition,
        action: Any,
        ctx: dict[str, Any],
        logs: list[str],
    ) -> StepOutcome | None:
        timeout = self._config.browser_timeout_ms

        match action:
            case actions.Navigate(url=raw_url):
                url = render_template(raw_url, ctx)
                if not url.startswith("http") and flow.base_url:
                    url = f"{flow.base_url}{url}"
                logs.append(f"  -> GET {url}")
                status = await driver.goto(url, timeout)
                if status is None:
                    raise StepError(f"Navigation to {url} returned no response")
                logs.append(f"  <- HTTP {status}")
                if status >= 400:
                    raise StepError(f"HTTP {status} loading {url}", http_status=status)
                return StepOutcome(http_status=status)

            case actions.Click(selector=sel):
                logs.append(f'  -> Click "{sel}"')
                await driver.wait_for_visible(sel, timeout)
                await driver.click(sel)

            case actions.Fill(selector=sel, value=value):
                value = render_template(value, ctx)
                logs.append(f'  -> Fill "{sel}" with "{value[:40]}"')
                await driver.wait_for_visible(sel, timeout)
                await driver.fill(sel, value)

            case actions.Select(selector=sel, value=value):
                value = render_template(value, ctx)
                logs.append(f'  -> Select "{value}" in "{sel}"')
                await driver.wait_for_visible(sel, timeout)
                await driver.select(sel, value)

            case actions.Hover(selector=sel):
                logs.append(f'  -> Hover "{sel}"')
                await driver.wait_for_visible(sel, timeout)
                await driver.hover(sel)

            case actions.Press(selector=sel, key=key):
                logs.append(f'  -> Press "{key}" on "{sel}"')
                await driver.wait_for_visible(sel, timeout)
                await driver.press(sel, key)

            case actions.WaitFor(selector=sel, timeout_ms=wait_ms):
                wait_ms = wait_ms or timeout
                logs.append(f'  -> Wait for "{sel}" ({wait_ms}ms)')
                await driver.wait_for_visible(sel, wait_ms)

            case actions.WaitForUrl(pattern=pattern):
                logs.append(f'  -> Wait for URL "{pattern}"')
                await driver.wait_for_url(pattern, timeout)
                logs.append(f"  <- URL matched: {driver.current_url()}")

            case actions.AssertText(selector=sel, text=expected):
                expected = render_template(expected, ctx)
                logs.append(f'  -> Assert "{sel}" contains "{expected}"')
                await driver.wait_for_visible(sel, timeout)
                text = await driver.text_content(sel)
                if text is None or expected not in text:
                    raise StepAssertionError(
                        f'Expected "{expected}" in "{sel}", got: "{(text or "")[:200]}"'
                    )

            case actions.AssertUrl(pattern=pattern):
                current = driver.current_url()
                logs.append(f'  -> Assert URL matches "{pattern}" (current: {current})')
                if not url_pattern(pattern).search(current):
                    raise StepAssertionError(f'URL "{current}" does not match "{pattern}"')

            case actions.AssertVisible(selector=sel):
                logs.append(f'  -> Assert "{sel}" is visible')
                await driver.wait_for_visible(sel, timeout)

            case actions.Evaluate(script=script):
                logs.append(f"  -> Evaluate: {script[:100]}")
                result = await driver.evaluate(script)
                shown = json.dumps(result, default=str)
                logs.append(f"  <- Result: {shown}")
                if result is None or result is False:
                    raise StepAssertionError(f"evaluate returned falsy: {shown}")

            case actions.Screenshot():
                logs.append("  -> Screenshot")

            case actions.UnknownAction(action=unknown):
                logs.append(f'  Unknown action "{unknown}", skipping')
                logger.warning("browser_action_unknown", flow_id=flow.id, action=unknown)

            case _:
                raise StepError(f"unsupported browser action: {action!r}")

        return None
