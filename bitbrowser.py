"""
Client for the local BitBrowser automation daemon.

Resolves a profile (by id, sequence number or list position), reuses the
browser when it is already open or launches it, and attaches DrissionPage to
its DevTools endpoint.
"""

import logging
import time
from urllib.parse import urlparse

import requests
from DrissionPage import Chromium
from DrissionPage.errors import BrowserConnectError

from errors import SessionError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'http://127.0.0.1:54345'


class RequestThrottle:
    """Keeps consecutive control API calls at least min_interval seconds apart"""

    def __init__(self, min_interval=0.6, clock=time.monotonic, sleep=time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call = None

    def wait(self):
        now = self._clock()
        if self._last_call is not None:
            elapsed = now - self._last_call
            if elapsed < self.min_interval:
                self._sleep(self.min_interval - elapsed)
        self._last_call = self._clock()


def format_browser_list(browsers):
    """Human readable listing of profiles returned by /browser/list"""
    lines = []
    for position, browser in enumerate(browsers, start=1):
        lines.append(
            f"Position: {position}, ID: {browser.get('id')}, "
            f"Seq: {browser.get('seq') or 'unknown'}, Name: {browser.get('name') or '(no name)'}"
        )
    return lines


def devtools_address(data):
    """Extract a host:port DevTools address from a BitBrowser payload"""
    if not data:
        return None
    if data.get('http'):
        return data['http']
    ws = data.get('ws')
    if ws:
        return urlparse(ws).netloc or None
    return None


class BitBrowserClient:
    def __init__(self, base_url=DEFAULT_BASE_URL, min_interval=0.6, timeout=None, startup_wait=5,
                 session=None, throttle=None, sleep=time.sleep):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.startup_wait = startup_wait
        self.session = session or requests.Session()
        self.throttle = throttle or RequestThrottle(min_interval)
        self._sleep = sleep

    def _post(self, path, data=None):
        """Throttled POST to the control API, returning the decoded JSON body"""
        self.throttle.wait()
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=data or {}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SessionError(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise SessionError(f"Request to {url} failed with HTTP {response.status_code}, check the BitBrowser daemon")

        try:
            return response.json()
        except ValueError as e:
            raise SessionError(f"Request to {url} returned invalid JSON") from e

    def list_browsers(self, page=0, page_size=100):
        result = self._post('/browser/list', {'page': page, 'pageSize': page_size})
        if result.get('success') and result.get('data') and result['data'].get('list'):
            return result['data']['list']
        return []

    def browser_detail(self, profile_id):
        result = self._post('/browser/detail', {'id': profile_id})
        if result.get('success') and result.get('data'):
            return result['data']
        return None

    def resolve_profile_id(self, identifier):
        """
        Map a user supplied identifier to a profile id.

        Numeric identifiers are tried as the profile's seq number, then as a
        1-based position in the profile list. Anything else is a profile id.
        """
        identifier = str(identifier).strip()
        if not identifier.isdigit():
            return identifier

        index = int(identifier)
        browsers = self.list_browsers()
        if not browsers:
            raise SessionError("No browser profiles found, make sure BitBrowser is running and has profiles")

        for browser in browsers:
            if browser.get('seq') == index:
                logger.info(f"Found browser ID {browser['id']} for seq {index}")
                return browser['id']

        if 0 < index <= len(browsers):
            browser = browsers[index - 1]
            logger.info(f"Using browser ID {browser['id']} at position {index}")
            return browser['id']

        logger.error("Available browser profiles:")
        for line in format_browser_list(browsers):
            logger.error(f"  {line}")
        raise SessionError(f"No browser profile with seq or position {index}, use one of the IDs or positions listed above")

    def get_active_address(self, profile_id):
        """Return the DevTools address of an already open profile, or None"""
        result = self._post('/browser/pids/all')
        if not result.get('success') or not result.get('data'):
            return None

        data = result['data']
        if isinstance(data, dict):
            if not data.get(profile_id):
                return None
        elif isinstance(data, list):
            for browser in data:
                if browser.get('id') == profile_id or browser.get('browserId') == profile_id:
                    address = devtools_address(browser)
                    if address:
                        return address
                    break
            else:
                return None

        return devtools_address(self.browser_detail(profile_id))

    def open_browser(self, profile_id):
        """Launch a profile and return its DevTools address"""
        logger.info("Browser not open, launching...")
        result = self._post('/browser/open', {'id': profile_id, 'loadExtensions': True})
        if not result.get('success'):
            raise SessionError(f"Failed to open browser: {result.get('msg') or 'unknown error'}")

        address = devtools_address(result.get('data'))

        logger.info(f"Waiting {self.startup_wait}s for the browser to start...")
        self._sleep(self.startup_wait)

        if not address:
            address = self.get_active_address(profile_id)
            if not address:
                raise SessionError("Could not get the browser DevTools address")
        return address

    def connect(self, identifier):
        """Attach to the profile's browser, launching it if needed. Returns (browser, tab)"""
        profile_id = self.resolve_profile_id(identifier)
        logger.info(f"Connecting to browser {profile_id}...")

        address = self.get_active_address(profile_id)
        if address:
            logger.info("Browser already open, attaching...")
        else:
            address = self.open_browser(profile_id)

        try:
            browser = Chromium(addr_or_opts=address)
        except BrowserConnectError as e:
            raise SessionError(f"Could not attach to browser at {address}: {e}") from e

        tab = browser.latest_tab
        logger.info("Browser connected")
        return browser, tab
