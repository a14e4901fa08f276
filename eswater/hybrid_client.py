"""ESWater portal client: browser login, then plain HTTP for the usage API.

The portal has no public API. A headless Chromium logs in, the usage page is
opened so the portal's own API calls can be intercepted, and the harvested
credentials plus session cookies are then reused with ``requests``.
"""

import logging
import random
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import requests
from playwright.sync_api import Browser, BrowserContext, Error as PlaywrightError, Page, Playwright, Route, Request
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .auth_extraction import (
    classify_login_page,
    extract_auth_from_request_body,
    extract_auth_from_scripts,
    summarize_readings,
)
from .models import AuthData, LoginOutcome, LoginResult, UsageSummary, mask_username

logger = logging.getLogger(__name__)

BASE_URL = "https://www.eswater.co.uk"
LOGIN_URL = f"{BASE_URL}/login/"
USAGE_PAGE_URL = f"{BASE_URL}/account/?account=home&step=myUsage&type=SmartMeter"
HOURLY_USAGE_URL = f"{BASE_URL}/api/Customer/GetHourlyWaterUsage"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
    "--no-zygote",
    "--disable-blink-features=AutomationControlled",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
Object.defineProperty(navigator, 'languages', {get: () => ['en-GB', 'en-US', 'en']});
"""

COOKIE_SELECTORS = [
    "#onetrust-accept-btn-handler",
    'button:has-text("Accept all")',
    'button:has-text("Accept All Cookies")',
    'button:has-text("Accept")',
]

EMAIL_SELECTORS = [
    'input[type="email"]',
    'input[name="email"]',
    'input[id="email"]',
    '#loginForm input[type="email"]',
]

PASSWORD_SELECTORS = [
    'input[type="password"]',
    'input[name="password"]',
    'input[id="password"]',
    '#loginForm input[type="password"]',
]

SUBMIT_SELECTORS = [
    "#recaptcha-demo-submit",
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Log in")',
    'button:has-text("Sign in")',
]

SET_VALUE_SCRIPT = """
([selector, value]) => {
    const input = document.querySelector(selector);
    if (!input) return false;
    input.focus();
    input.value = value;
    input.dispatchEvent(new Event('input', {bubbles: true}));
    input.dispatchEvent(new Event('change', {bubbles: true}));
    return true;
}
"""

CAPTCHA_SCRIPT = """
() => ({
    hasRecaptcha: !!document.querySelector('[class*="recaptcha"], [id*="recaptcha"], iframe[src*="recaptcha"]'),
    hasCaptcha: !!document.querySelector('[class*="captcha"], [id*="captcha"]'),
    hasBotProtection: !!document.querySelector('[class*="cloudflare"], [class*="bot"], [class*="protection"]'),
})
"""

PAGE_ANALYSIS_SCRIPT = """
() => {
    const errorSelectors = [
        '.error', '.alert-danger', '[class*="error"]', '[class*="invalid"]',
        '.validation-summary-errors', '.field-validation-error', '[class*="login-error"]',
        '[class*="auth-error"]', '.login-failed', '[role="alert"]', '.alert-error',
    ];
    const errors = [];
    errorSelectors.forEach((selector) => {
        document.querySelectorAll(selector).forEach((el) => {
            const text = (el.textContent || '').trim();
            if (text) errors.push(text);
        });
    });
    return {
        errors: Array.from(new Set(errors)),
        stillOnLoginForm: !!document.querySelector('#loginForm'),
        hasAccountContent: !!document.querySelector('[href*="account"], [class*="dashboard"], [class*="account"]'),
        title: document.title,
    };
}
"""

SCRIPT_TEXT_SCRIPT = """
() => Array.from(document.querySelectorAll('script')).map((s) => s.textContent || '')
"""


class EswaterError(Exception):
    """Login, credential harvesting or usage API call failed."""


def _human_pause(low: float = 0.5, high: float = 1.5) -> None:
    time.sleep(random.uniform(low, high))


class EswaterHybridClient:
    """Browser-assisted client for the ESWater customer portal.

    Use as a context manager so the browser is always shut down:

        with EswaterHybridClient() as client:
            client.login_and_extract_auth(username, password)
            summary = client.get_usage_data()
    """

    def __init__(
        self,
        browser_executable: Optional[str] = None,
        headless: bool = True,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.browser_executable = browser_executable or None
        self.headless = headless
        self.timeout = timeout
        self.auth = AuthData()
        self._session = session or requests.Session()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    def __enter__(self) -> "EswaterHybridClient":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def initialize(self) -> None:
        logger.info("Starting headless browser...")
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.headless,
            executable_path=self.browser_executable,
            args=BROWSER_ARGS,
        )
        self._context = self._browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1366, "height": 768},
            locale="en-GB",
            timezone_id="Europe/London",
            extra_http_headers={"Accept-Language": "en-GB,en-US;q=0.9,en;q=0.8", "DNT": "1"},
        )
        self._page = self._context.new_page()
        self._page.add_init_script(STEALTH_SCRIPT)
        self._page.route("**/api/Customer/**", self._on_api_request)

    def cleanup(self) -> None:
        """Close the browser; safe to call more than once."""
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except PlaywrightError as e:
                logger.debug("Error closing browser: %s", e)
        if self._playwright is not None:
            self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise EswaterError("Browser not initialized")
        return self._page

    def _on_api_request(self, route: Route, request: Request) -> None:
        captured = extract_auth_from_request_body(request.post_data)
        missing_before = set(self.auth.missing_fields())
        self.auth.merge(captured)
        newly_captured = missing_before - set(self.auth.missing_fields())
        if newly_captured:
            logger.info("Captured %s from %s", ", ".join(sorted(newly_captured)), request.url.rsplit("/", 1)[-1])
        route.continue_()

    def _dismiss_cookie_banner(self) -> None:
        for selector in COOKIE_SELECTORS:
            try:
                button = self.page.locator(selector).first
                if button.is_visible(timeout=1000):
                    button.click()
                    logger.debug("Dismissed cookie consent via %s", selector)
                    return
            except PlaywrightError:
                continue

    def _fill_field(self, selectors: List[str], value: str, label: str) -> None:
        """Type into the first matching field, falling back to a scripted value set."""
        for selector in selectors:
            try:
                field = self.page.locator(selector).first
                field.wait_for(state="visible", timeout=3000)
                field.click()
                field.fill("")
                field.type(value, delay=random.randint(40, 120))
                logger.debug("Filled %s via %s", label, selector)
                return
            except PlaywrightError:
                continue

        for selector in selectors:
            try:
                if self.page.evaluate(SET_VALUE_SCRIPT, [selector, value]):
                    logger.debug("Filled %s via script fallback (%s)", label, selector)
                    return
            except PlaywrightError:
                continue

        raise EswaterError(f"Could not find the {label} field on the login page")

    def _wait_for_captcha(self) -> None:
        try:
            markers = self.page.evaluate(CAPTCHA_SCRIPT)
        except PlaywrightError:
            return
        if any(markers.values()):
            logger.warning("Bot protection detected on login page (%s), waiting longer", markers)
            self.page.wait_for_timeout(5000)

    def _submit(self) -> None:
        for selector in SUBMIT_SELECTORS:
            try:
                button = self.page.locator(selector).first
                if button.is_visible(timeout=1000):
                    button.click()
                    logger.debug("Submitted login form via %s", selector)
                    return
            except PlaywrightError:
                continue
        logger.debug("No submit control found, pressing Enter")
        self.page.keyboard.press("Enter")

    def _login_outcome(self) -> LoginResult:
        try:
            self.page.wait_for_url("**/account/**", timeout=20000)
            return LoginResult(LoginOutcome.SUCCESS, "Redirected to account area")
        except PlaywrightTimeoutError:
            logger.debug("No redirect to account area, inspecting page")

        self.page.wait_for_timeout(5000)
        url = self.page.url
        if "account" in url:
            return LoginResult(LoginOutcome.SUCCESS, "Account URL reached")

        try:
            analysis: Dict[str, Any] = self.page.evaluate(PAGE_ANALYSIS_SCRIPT)
        except PlaywrightError as e:
            return LoginResult(LoginOutcome.AMBIGUOUS, f"Page analysis failed: {e}")
        return classify_login_page(url, analysis)

    def login(self, username: str, password: str) -> LoginResult:
        """Drive the portal login form and report how it went."""
        if not username or not password:
            raise EswaterError("Username and password are required")

        logger.info("Logging in to ESWater as %s", mask_username(username))
        self.page.goto(LOGIN_URL, wait_until="domcontentloaded", timeout=60000)
        _human_pause(1.0, 2.5)
        self._dismiss_cookie_banner()

        try:
            self.page.wait_for_selector("#loginForm", timeout=15000)
        except PlaywrightTimeoutError:
            logger.warning("Login form not found by id, trying generic fields")

        self._fill_field(EMAIL_SELECTORS, username, "email")
        _human_pause()
        self._fill_field(PASSWORD_SELECTORS, password, "password")
        _human_pause()
        self._wait_for_captcha()
        self._submit()

        result = self._login_outcome()
        logger.info("Login outcome: %s (%s)", result.outcome.value, result.message)
        return result

    def extract_auth(self) -> AuthData:
        """Open the usage page and collect API credentials and cookies."""
        logger.info("Opening usage page to capture API credentials...")
        try:
            self.page.goto(USAGE_PAGE_URL, wait_until="networkidle", timeout=60000)
        except PlaywrightTimeoutError:
            logger.warning("Usage page did not settle, continuing with what was captured")
        self.page.wait_for_timeout(8000)

        for cookie in self._context.cookies():
            self._session.cookies.set(
                cookie["name"], cookie["value"], domain=cookie.get("domain"), path=cookie.get("path", "/")
            )

        if not self.auth.complete:
            logger.info("Missing %s from traffic, searching page scripts", ", ".join(self.auth.missing_fields()))
            try:
                scripts = self.page.evaluate(SCRIPT_TEXT_SCRIPT)
            except PlaywrightError as e:
                logger.warning("Could not read page scripts: %s", e)
                scripts = []
            self.auth.merge(extract_auth_from_scripts(scripts))

        if not self.auth.complete:
            raise EswaterError(
                "Could not capture API credentials: missing " + ", ".join(self.auth.missing_fields())
            )
        logger.info("Captured API credentials for account %s", self.auth.account_id)
        return self.auth

    def login_and_extract_auth(self, username: str, password: str) -> LoginResult:
        """Log in; on anything but a clear failure also harvest credentials."""
        result = self.login(username, password)
        if result.outcome is not LoginOutcome.FAILURE:
            self.extract_auth()
        return result

    def fetch_hourly_data(self, days_back: int) -> List[Dict[str, Any]]:
        """Fetch the hourly readings of the day ``days_back`` days ago."""
        if not self.auth.complete:
            raise EswaterError("Not authenticated: call login_and_extract_auth first")

        start = date.today() - timedelta(days=days_back)
        body = {
            "AccountId": self.auth.account_id,
            "Authorization": self.auth.authorization,
            "MeterSerial": self.auth.meter_serial,
            "StartDate": f"{start.isoformat()}T00:00:00",
        }
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "Content-Type": "application/json",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": USAGE_PAGE_URL,
            "Origin": BASE_URL,
        }

        try:
            response = self._session.post(HOURLY_USAGE_URL, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise EswaterError(f"Usage API request failed: {e}") from e

        if response.status_code >= 400:
            raise EswaterError(f"Usage API returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise EswaterError("Usage API returned invalid JSON") from e

        readings = data if isinstance(data, list) else []
        logger.debug("Got %d hourly readings for %s", len(readings), start)
        return readings

    def get_usage_data(self, min_days_back: int = 3, max_days_back: int = 7) -> UsageSummary:
        """Return the most recent day that has readings.

        Smart meter data lags a few days, so start ``min_days_back`` ago and
        walk back until data is found.
        """
        if not self.auth.complete:
            raise EswaterError("Not authenticated: call login_and_extract_auth first")

        for days_back in range(min_days_back, max_days_back + 1):
            try:
                readings = self.fetch_hourly_data(days_back)
            except EswaterError as e:
                logger.debug("Usage request for %d days ago failed: %s", days_back, e)
                continue
            if readings:
                summary = summarize_readings(readings, days_back)
                logger.info(
                    "Usage %d days ago: %.2f L over %d readings",
                    days_back, summary.daily_usage, summary.reading_count
                )
                return summary
            logger.debug("No readings %d days ago", days_back)

        raise EswaterError(f"No water usage data found in the last {max_days_back} days")
