import argparse
import copy
import enum
import json
import logging
import os
import random
import sys
import time
from dataclasses import dataclass
from datetime import datetime

from dotenv import load_dotenv

from bitbrowser import BitBrowserClient, format_browser_list
from errors import AutomationError, ConfigurationError, FinderError, SessionError
from patterns import enumerate_candidates, universe_size, validate_template
from progress import RemainingWork, SearchProgress, remaining

logger = logging.getLogger(__name__)


def get_base_path():
    """Get the base path for the current operating system"""
    # Use the directory where this script is located
    return os.path.dirname(os.path.abspath(__file__))

BASE_PATH = get_base_path()

TRUE_VALUES = ('1', 'true', 'yes', 'on')
FALSE_VALUES = ('0', 'false', 'no', 'off')


class SearchOutcome(enum.Enum):
    FOUND = 'found'
    NOT_FOUND = 'not_found'


@dataclass
class SearchSummary:
    attempted: int = 0
    found: int = 0
    not_found: int = 0


def get_default_config():
    """Return default configuration if config file is not found"""
    return {
        "search": {
            "pattern": "abc3333",
            "exclude_digit_4": True
        },
        "bitbrowser": {
            "base_url": "http://127.0.0.1:54345",
            "min_request_interval": 0.6,
            "startup_wait": 5,
            "timeout": None
        },
        "page": {
            "url": "https://voice.google.com/signup",
            "search_box_label": "Search by city or area code",
            "no_results_text": "No Google Voice numbers are available",
            "initial_load_wait": 5,
            "clear_wait": 0.5,
            "typing_delay": 0.1,
            "results_wait": 3,
            "element_timeout": 10
        },
        "files": {
            "state_dir": ".",
            "screenshot_dir": "gv_screenshots",
            "results_log": "search_results.log",
            "log_file": "gv_search.log"
        },
        "debug": {
            "verbose_logging": False
        }
    }


def merge_config(base, overrides):
    """Recursively overlay user settings on the defaults"""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_bool(value, name):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def apply_env_overrides(config):
    """Let .env / environment variables override config.json"""
    if os.getenv('BITBROWSER_API_URL'):
        config['bitbrowser']['base_url'] = os.getenv('BITBROWSER_API_URL')
    if os.getenv('GV_SEARCH_PATTERN'):
        config['search']['pattern'] = os.getenv('GV_SEARCH_PATTERN')
    if os.getenv('GV_EXCLUDE_DIGIT_4'):
        config['search']['exclude_digit_4'] = parse_bool(os.getenv('GV_EXCLUDE_DIGIT_4'), 'GV_EXCLUDE_DIGIT_4')
    return config


def load_config(config_path=None):
    """Load configuration from config.json merged over the defaults"""
    config_path = config_path or os.path.join(BASE_PATH, 'config.json')
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = json.load(f)
        logger.info(f"Configuration loaded from {config_path}")
    except FileNotFoundError:
        logger.info(f"Config file not found at {config_path}. Using default configuration.")
        user_config = {}
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file {config_path} is not valid JSON: {e}") from e

    if not isinstance(user_config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

    return apply_env_overrides(merge_config(get_default_config(), user_config))


def search_settings(config):
    """Validated (pattern, exclude_digit_4) pair for this run"""
    pattern = config['search']['pattern']
    exclude_digit_4 = parse_bool(config['search']['exclude_digit_4'], 'search.exclude_digit_4')
    validate_template(pattern)
    return pattern, exclude_digit_4


LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_console_logging():
    """Console-only logging until the config, and with it the log file, is known"""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def setup_logging(config):
    level = logging.DEBUG if config['debug'].get('verbose_logging') else logging.INFO
    handlers = [logging.StreamHandler()]
    log_file = config['files'].get('log_file')
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def ensure_screenshot_dir(config):
    """Create the screenshot directory on first use"""
    screenshot_dir = config['files']['screenshot_dir']
    if not os.path.isdir(screenshot_dir):
        os.makedirs(screenshot_dir, exist_ok=True)
        logger.info(f"Created screenshot directory: {screenshot_dir}")
    return screenshot_dir


def load_initial_page(tab, config):
    """Load the signup page for the first time"""
    url = config['page']['url']
    logger.info(f"Loading signup page: {url}")
    try:
        loaded = tab.get(url)
    except Exception as e:
        raise SessionError(f"Could not load {url}: {e}") from e
    if loaded is False:
        raise SessionError(f"Could not load {url}, check the browser connection")

    wait = config['page']['initial_load_wait']
    logger.info(f"Waiting for page to load ({wait}s)...")
    time.sleep(wait)


def find_search_box(tab, config):
    """Locate the search input by its accessible name"""
    label = config['page']['search_box_label']
    timeout = config['page']['element_timeout']
    selectors = [
        f'@aria-label={label}',
        f'@placeholder={label}',
        f'xpath://input[@aria-label="{label}" or @placeholder="{label}"]',
    ]

    for i, selector in enumerate(selectors):
        logger.debug(f"Trying search box selector {i+1}: {selector}")
        element = tab.ele(selector, timeout=timeout if i == 0 else 1)
        if element:
            return element
    return None


def type_with_delay(element, text, delay):
    """Type one character at a time to look like manual input"""
    for char in text:
        element.input(char, clear=False)
        time.sleep(delay)


def search_candidate(tab, candidate, config):
    """Submit one candidate in the search box and classify the result"""
    page = config['page']
    try:
        search_box = find_search_box(tab, config)
        if not search_box:
            raise AutomationError(candidate, f"search box '{page['search_box_label']}' not found")

        search_box.click()
        search_box.clear()
        time.sleep(page['clear_wait'])

        type_with_delay(search_box, candidate, page['typing_delay'])

        logger.debug("Waiting for search results...")
        time.sleep(page['results_wait'])

        matches = tab.eles(f"text:{page['no_results_text']}", timeout=1)
    except AutomationError:
        raise
    except Exception as e:
        raise AutomationError(candidate, str(e)) from e

    if len(matches) > 0:
        return SearchOutcome.NOT_FOUND
    return SearchOutcome.FOUND


def screenshot_timestamp(now=None):
    now = now or datetime.now()
    return now.isoformat().replace(':', '-').replace('.', '-')


def save_screenshot(tab, candidate, config):
    """Full page screenshot named after the candidate"""
    screenshot_dir = ensure_screenshot_dir(config)
    path = os.path.join(screenshot_dir, f"{candidate}_{screenshot_timestamp()}.png")
    try:
        tab.get_screenshot(path=path, full_page=True)
    except Exception as e:
        raise AutomationError(candidate, f"screenshot failed: {e}") from e
    logger.info(f"Screenshot saved to {path}")
    return path


def append_result_log(candidate, screenshot_path, config):
    screenshot_dir = ensure_screenshot_dir(config)
    log_path = os.path.join(screenshot_dir, config['files']['results_log'])
    entry = f"{datetime.now():%Y-%m-%d %H:%M:%S} - search: {candidate} - screenshot: {screenshot_path}\n"
    with open(log_path, 'a', encoding='utf-8') as f:
        f.write(entry)


def run_search_loop(tab, work, progress, config, rng=None):
    """
    Search every remaining candidate in random order.

    Progress is saved after each attempt. An AutomationError stops the loop
    and leaves the failing candidate unrecorded so the next run retries it.
    """
    rng = rng or random.Random()
    summary = SearchSummary()

    while len(work) > 0:
        candidate = work.pick(rng)
        logger.info(f"Searching {candidate}... ({len(work)} remaining)")

        outcome = search_candidate(tab, candidate, config)
        if outcome is SearchOutcome.FOUND:
            logger.info(f"✅ Results found for {candidate}, taking screenshot...")
            screenshot_path = save_screenshot(tab, candidate, config)
            append_result_log(candidate, screenshot_path, config)
            summary.found += 1
        else:
            logger.info(f"No numbers available for {candidate}")
            summary.not_found += 1

        progress.mark_searched(candidate)
        work.discard(candidate)
        summary.attempted += 1

    return summary


def run(profile_identifier, config, client=None, rng=None):
    """Main execution function"""
    pattern, exclude_digit_4 = search_settings(config)
    logger.info(f"Search pattern: {pattern} (digit 4 {'excluded' if exclude_digit_4 else 'allowed'})")

    total = universe_size(pattern, exclude_digit_4)
    logger.info(f"Generating {total} candidates...")
    universe = enumerate_candidates(pattern, exclude_digit_4)
    progress = SearchProgress(config['files']['state_dir'], pattern, exclude_digit_4)
    searched = progress.load()
    work = RemainingWork(remaining(universe, searched))

    logger.info(f"Searched {len(searched & universe)} of {total} candidates, {len(work)} remaining")
    if len(work) == 0:
        logger.info("🎉 Nothing left to search for this pattern")
        return SearchSummary()

    if client is None:
        bb = config['bitbrowser']
        client = BitBrowserClient(
            base_url=bb['base_url'],
            min_interval=bb['min_request_interval'],
            timeout=bb['timeout'],
            startup_wait=bb['startup_wait']
        )

    logger.info("Connecting to browser...")
    _, tab = client.connect(profile_identifier)

    load_initial_page(tab, config)
    summary = run_search_loop(tab, work, progress, config, rng)

    logger.info(f"🎉 All searches completed: {summary.attempted} searched, {summary.found} with results")
    return summary


def list_profiles(config):
    bb = config['bitbrowser']
    client = BitBrowserClient(base_url=bb['base_url'], min_interval=bb['min_request_interval'], timeout=bb['timeout'])
    browsers = client.list_browsers()
    if not browsers:
        print("No browser profiles found")
        return
    print("Browser profiles:")
    for line in format_browser_list(browsers):
        print(f"  {line}")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Search available Google Voice numbers for a digit pattern through a BitBrowser profile",
        epilog="Example: python main.py 1003"
    )
    parser.add_argument('profile', nargs='?', help="BitBrowser profile ID, seq number or list position")
    parser.add_argument('--config', help="Path to config.json (defaults to the one next to main.py)")
    parser.add_argument('--list-browsers', action='store_true', help="List BitBrowser profiles and exit")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.profile and not args.list_browsers:
        parser.print_usage(sys.stderr)
        print("error: a browser profile is required, e.g. python main.py 1003", file=sys.stderr)
        return 2

    load_dotenv()

    setup_console_logging()
    try:
        config = load_config(args.config)
        setup_logging(config)

        if args.list_browsers:
            list_profiles(config)
            return 0

        logger.info(f"🚀 Starting with browser profile: {args.profile}")
        run(args.profile, config)
        return 0
    except AutomationError as e:
        logger.error(f"❌ Search for {e.candidate} failed, stopping: {e}")
        return 1
    except FinderError as e:
        logger.error(f"❌ {e}")
        return 1
    except OSError as e:
        logger.error(f"❌ File error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
