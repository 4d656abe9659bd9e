#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Interactive command-line reader for the New York Times Top Stories API.

Each section's listing is fetched at most once per calendar day and cached
locally; later views of the same section on the same day are served from the
cache without touching the network.

Features:
- Date-keyed section cache persisted to a single local YAML store
- Numbered article browser with a configurable display limit
- Optional YAML config for endpoint, timeout and store location
- Logging and error reporting that never exposes the API key
"""

import os
import re
import sys
import yaml
import json
import requests
import time
import tempfile
import traceback
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Tuple

# Fix encoding for Windows console
if sys.platform == 'win32':
    sys.stdout.reconfigure(encoding='utf-8')

# ============================================================================
# LOGGING SETUP
# ============================================================================

def setup_logging():
    """Configure logging with appropriate format and level."""
    logging.basicConfig(
        level=logging.INFO,
        format='[%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    return logging.getLogger(__name__)

logger = setup_logging()

# ============================================================================
# CONSTANTS
# ============================================================================

# File paths
CONFIG_FILE = "times_cli_config.yml"
ENV_VAR_CONFIG = "TIMES_CLI_CONFIG"
DEFAULT_STORE_PATH = ".times_cli.yml"
DATE_FORMAT = "%Y-%m-%d"

# API configuration
DEFAULT_BASE_URL = "https://api.nytimes.com/svc/topstories/v2/"
SIGN_UP_URL = "https://developer.nytimes.com/get-started"
PARAM_API_KEY = "api-key"
DEFAULT_TIMEOUT_SECONDS = 15
HTTP_OK = 200
API_KEY_LENGTH = 32

# Display
DEFAULT_MAX_TITLE_LENGTH = 70
TITLE_ELLIPSIS = "..."
REDACTED = "***"

# Input
DECIMAL_PATTERN = re.compile(r"[+-]?[0-9]+")

# Store keys
KEY_API_KEY = "api_key"
KEY_DISPLAY_LIMIT = "display_limit"
SECTION_KEY_PREFIX = "section"

# Session menu actions (never valid topic names)
ACTION_RESET_KEY = ":reset-key"
ACTION_SET_LIMIT = ":set-limit"
ACTION_EXIT = ":exit"

KNOWN_TOPICS = (
    "arts", "automobiles", "books/review", "business", "fashion", "food",
    "health", "home", "insider", "magazine", "movies", "nyregion",
    "obituaries", "opinion", "politics", "realestate", "science", "sports",
    "sundayreview", "technology", "theater", "t-magazine", "travel",
    "upshot", "us", "world",
)

TOPIC_DISPLAY_NAMES = {
    "books/review": "Book Review",
    "nyregion": "N.Y. Region",
    "realestate": "Real Estate",
    "sundayreview": "Sunday Review",
    "t-magazine": "T Magazine",
    "us": "U.S.",
}

# Log messages
MSG_INFO_LOADED_CONFIG = "Loaded configuration from {path}"
MSG_DEBUG_CONFIG_NOT_FOUND = "Config file {path} not found, using defaults"
MSG_WARNING_CONFIG_ERROR = "Error loading config file: {error}, using defaults"
MSG_WARNING_CONFIG_NOT_MAPPING = "Config file {path} does not contain a mapping, using defaults"
MSG_DEBUG_STORE_MISSING = "No saved data at {path}, starting fresh"
MSG_DEBUG_STORE_LOADED = "Loaded {count} saved value(s) from {path}"
MSG_DEBUG_STORE_SAVED = "Saved {count} value(s) to {path}"
MSG_ERROR_STORE_READ = "Unable to read {path}: {error}"
MSG_ERROR_STORE_FORMAT = "{path} does not contain a key/value mapping"
MSG_ERROR_STORE_WRITE = "Unable to save data to {path}: {error}"
MSG_WARNING_BAD_LIMIT = "Ignoring invalid display limit {value!r} in store"
MSG_WARNING_BAD_CACHE_DATE = "Ignoring cached {topic} listing with invalid date {value!r}"
MSG_DEBUG_CACHE_HIT = "Using cached {topic} listing from {date}"
MSG_DEBUG_CACHE_MISS = "Fetching {topic} listing (last fetched: {date})"
MSG_DEBUG_CACHE_STORED = "Cached {topic} listing for {date}"
MSG_DEBUG_REFRESH_FAILED = "Could not refresh {topic}: {error}"
MSG_DEBUG_FETCHING = "GET {url}"
MSG_DEBUG_RESPONSE = "HTTP {status_code} in {elapsed:.0f}ms"
MSG_ERROR_TIMEOUT = "Request for {topic} timed out after {timeout} seconds"
MSG_ERROR_REQUEST = "Request for {topic} failed: {error}"
MSG_ERROR_NO_API_KEY = "No API key configured"
MSG_ERROR_REMOTE_STATUS = "Remote API returned status {status_code}"
MSG_ERROR_NOT_UTF8 = "Response body is not valid UTF-8"
MSG_ERROR_NOT_JSON = "Response body is not valid JSON: {error}"
MSG_ERROR_NO_RESULTS = "Response body has no 'results' list"
MSG_ERROR_UNKNOWN_TOPIC = "Unknown section: {topic!r}"
MSG_ERROR_UNREADABLE_LISTING = "Cached {topic} listing could not be read: {error}"
MSG_INFO_END_OF_INPUT = "End of input reached"
MSG_INFO_INTERRUPTED = "Interrupted by user"
MSG_FATAL_ERROR = "FATAL ERROR"
MSG_ERROR_UNEXPECTED_MAIN = "Unexpected error in main"

# User-facing text
MSG_PROMPT_SELECTION = "\nEnter your selection [1-{upper}]: "
MSG_PROMPT_API_KEY = "\nAPI Key: "
MSG_PROMPT_LIMIT = "\nMaximum articles to show (0 for no limit): "
MSG_INVALID_SELECTION = "Invalid selection. Please try again."
MSG_INVALID_KEY = "Invalid key. Please try again."
MSG_INVALID_LIMIT = "Invalid limit. Enter a whole number of 0 or more."
MSG_KEY_SAVED = "Key saved.\n"
MSG_LIMIT_SAVED = "Display limit set to {label}.\n"
MSG_CURRENT_LIMIT = "Current display limit: {label}"
MSG_NO_LIMIT = "no limit"
MSG_MAIN_MENU_HEADER = "Please select a section to read, or change your settings:\n"
MSG_ARTICLE_MENU_HEADER = "\nSelect an article to read:\n"
MSG_MENU_BACK = "Back"
MSG_MENU_RESET_KEY = "Reset API Key"
MSG_MENU_SET_LIMIT = "Set Display Limit"
MSG_MENU_EXIT = "Exit"
MSG_EXITING = "\nExiting..."
MSG_REMOTE_FAILED = "Failed to retrieve section. Double-check your API key and try again."
MSG_RESPONSE_CODE = "Response Code: {status_code}"
MSG_FETCH_FAILED = "Unable to reach the Top Stories API. Check your connection and try again."
MSG_PARSE_FAILED = "The Top Stories API sent a response that could not be read. Try again later."
MSG_LISTING_UNREADABLE = "The saved listing for this section could not be read."
MSG_API_KEY_INSTRUCTIONS = (
    "To use times-cli, you need an API key from the NYT Dev Portal.\n",
    f"\t1. Visit {SIGN_UP_URL} to create an account.",
    "\t2. Create a new app and enable the Top Stories API. Name the app whatever you want.",
    "\t3. Copy your app's API key from the portal and paste it below.",
)

# ============================================================================
# EXCEPTIONS
# ============================================================================

class TimesCliError(Exception):
    """Base class for errors raised by times_cli."""


class FetchError(TimesCliError):
    """Raised when a section cannot be fetched (network failure, timeout, no key)."""


class RemoteError(TimesCliError):
    """Raised when the API answers with a non-success status code."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(message or MSG_ERROR_REMOTE_STATUS.format(status_code=status_code))


class ParseError(TimesCliError):
    """Raised when a listing body cannot be decoded into a list of articles."""


class InputError(TimesCliError):
    """Raised when interactive input is malformed. Always handled by re-prompting."""


class StoreError(TimesCliError):
    """Raised when the key/value store file cannot be read or written."""


class UnknownTopicError(TimesCliError, ValueError):
    """Raised when a topic is not one of the known Top Stories sections."""

# ============================================================================
# CONFIGURATION LOADING
# ============================================================================

def load_config(path: Optional[str] = None) -> Dict:
    """Load configuration from YAML file with fallback to defaults."""
    path = path or os.environ.get(ENV_VAR_CONFIG) or CONFIG_FILE
    try:
        if os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
            if not isinstance(config, dict):
                logger.warning(MSG_WARNING_CONFIG_NOT_MAPPING.format(path=path))
                return {}
            logger.info(MSG_INFO_LOADED_CONFIG.format(path=path))
            return config
        else:
            logger.debug(MSG_DEBUG_CONFIG_NOT_FOUND.format(path=path))
            return {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(MSG_WARNING_CONFIG_ERROR.format(error=e))
        return {}

def get_config_value(config: Dict, path: str, default):
    """Safely get nested config value using dot notation (e.g., 'api.timeout_seconds')."""
    value = config
    for key in path.split('.'):
        if not isinstance(value, dict):
            return default
        value = value.get(key)
        if value is None:
            return default
    return value

# ============================================================================
# TOPICS
# ============================================================================

def canonicalize_topic(topic: str) -> str:
    """Return the lowercase known-section name for ``topic`` (case-insensitive)."""
    canonical = (topic or "").strip().lower()
    if canonical not in KNOWN_TOPICS:
        raise UnknownTopicError(MSG_ERROR_UNKNOWN_TOPIC.format(topic=topic))
    return canonical

def topic_display_name(topic: str) -> str:
    return TOPIC_DISPLAY_NAMES.get(topic, topic.title())

def is_api_key_valid(api_key: str) -> bool:
    """An API key is exactly 32 ASCII letters and digits."""
    return len(api_key) == API_KEY_LENGTH and api_key.isascii() and api_key.isalnum()

# ============================================================================
# KEY-VALUE STORE
# ============================================================================

def _to_store_string(value) -> str:
    # Hand-edited files may hold unquoted dates or numbers
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class KeyValueStore:
    """
    String-to-string mapping persisted to a single YAML file.

    A missing file loads as an empty store. Saving rewrites the whole file
    through a temporary file and an atomic replace.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, str] = {}

    def load(self) -> "KeyValueStore":
        if not os.path.exists(self.path):
            logger.debug(MSG_DEBUG_STORE_MISSING.format(path=self.path))
            self._data = {}
            return self

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise StoreError(MSG_ERROR_STORE_READ.format(path=self.path, error=e)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise StoreError(MSG_ERROR_STORE_FORMAT.format(path=self.path))

        self._data = {str(key): _to_store_string(value) for key, value in data.items()}
        logger.debug(MSG_DEBUG_STORE_LOADED.format(count=len(self._data), path=self.path))
        return self

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix='.times_cli-', suffix='.tmp', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    yaml.safe_dump(self._data, f, default_flow_style=False, allow_unicode=True,
                                   sort_keys=True, width=float("inf"))
                os.replace(tmp_path, self.path)
            finally:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
        except OSError as e:
            raise StoreError(MSG_ERROR_STORE_WRITE.format(path=self.path, error=e)) from e
        logger.debug(MSG_DEBUG_STORE_SAVED.format(count=len(self._data), path=self.path))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set(self, key: str, value: str) -> None:
        if not isinstance(key, str) or not isinstance(value, str):
            raise TypeError("KeyValueStore keys and values must be strings")
        self._data[key] = value

    def as_dict(self) -> Dict[str, str]:
        return dict(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

# ============================================================================
# SETTINGS AND SECTION CACHE (two views over one store)
# ============================================================================

class Settings:
    """Credential and display limit, read from and written to the shared store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @property
    def api_key(self) -> Optional[str]:
        return self.store.get(KEY_API_KEY) or None

    @api_key.setter
    def api_key(self, value: str) -> None:
        if not is_api_key_valid(value):
            raise ValueError("API key must be 32 letters and digits")
        self.store.set(KEY_API_KEY, value)

    @property
    def display_limit(self) -> int:
        raw = self.store.get(KEY_DISPLAY_LIMIT)
        if raw is None:
            return 0
        try:
            limit = int(raw)
        except ValueError:
            logger.warning(MSG_WARNING_BAD_LIMIT.format(value=raw))
            return 0
        if limit < 0:
            logger.warning(MSG_WARNING_BAD_LIMIT.format(value=raw))
            return 0
        return limit

    @display_limit.setter
    def display_limit(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError("Display limit must be an integer >= 0")
        self.store.set(KEY_DISPLAY_LIMIT, str(value))


@dataclass(frozen=True)
class CacheEntry:
    topic: str
    last_fetch_date: date
    raw_listing: str


class SectionCache:
    """Per-topic (date, listing) pairs kept in the shared store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def keys_for(topic: str) -> Tuple[str, str]:
        return (
            f"{SECTION_KEY_PREFIX}.{topic}.last_fetch",
            f"{SECTION_KEY_PREFIX}.{topic}.listing",
        )

    def get_entry(self, topic: str) -> Optional[CacheEntry]:
        """Return the entry for ``topic``, or None when either half is missing."""
        date_key, listing_key = self.keys_for(topic)
        raw_date = self.store.get(date_key)
        raw_listing = self.store.get(listing_key)
        if raw_date is None or raw_listing is None:
            return None
        try:
            fetched = datetime.strptime(raw_date, DATE_FORMAT).date()
        except ValueError:
            logger.warning(MSG_WARNING_BAD_CACHE_DATE.format(topic=topic, value=raw_date))
            return None
        return CacheEntry(topic=topic, last_fetch_date=fetched, raw_listing=raw_listing)

    def put_entry(self, entry: CacheEntry) -> None:
        date_key, listing_key = self.keys_for(entry.topic)
        self.store.set(listing_key, entry.raw_listing)
        self.store.set(date_key, entry.last_fetch_date.strftime(DATE_FORMAT))

# ============================================================================
# REMOTE FETCHER
# ============================================================================

def _redact(text: str, secret: Optional[str]) -> str:
    return text.replace(secret, REDACTED) if secret else text


class TopStoriesFetcher:
    """Performs one timed GET against the Top Stories endpoint for a section."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = timeout

    def build_url(self, topic: str) -> str:
        return f"{self.base_url}{topic}.json"

    def fetch(self, topic: str, credential: str) -> Tuple[int, bytes]:
        """
        Return (status_code, body) for ``topic``.
        Raises FetchError on connection failures and timeouts.
        """
        url = self.build_url(topic)
        logger.debug(MSG_DEBUG_FETCHING.format(url=url))
        start_time = time.time()

        try:
            response = requests.get(url, params={PARAM_API_KEY: credential}, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise FetchError(MSG_ERROR_TIMEOUT.format(topic=topic, timeout=self.timeout)) from e
        except requests.exceptions.RequestException as e:
            # requests puts the full URL, key included, into its messages
            error = _redact(str(e), credential)
            raise FetchError(MSG_ERROR_REQUEST.format(topic=topic, error=error)) from e

        response_time_ms = (time.time() - start_time) * 1000
        logger.debug(MSG_DEBUG_RESPONSE.format(status_code=response.status_code, elapsed=response_time_ms))
        return response.status_code, response.content

# ============================================================================
# LISTING PARSING
# ============================================================================

@dataclass(frozen=True)
class Article:
    title: str
    byline: str
    short_url: str
    abstract: str

    @classmethod
    def from_result(cls, result: Dict) -> "Article":
        return cls(
            title=str(result.get("title") or ""),
            byline=str(result.get("byline") or ""),
            short_url=str(result.get("short_url") or result.get("url") or ""),
            abstract=str(result.get("abstract") or ""),
        )


def parse_listing(raw_listing: str) -> List[Article]:
    """
    Parse a Top Stories response body into articles, in the order the API returned them.
    Raises ParseError if the body is not a JSON object with a 'results' list.
    """
    try:
        data = json.loads(raw_listing)
    except (TypeError, ValueError) as e:
        raise ParseError(MSG_ERROR_NOT_JSON.format(error=e)) from e

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        raise ParseError(MSG_ERROR_NO_RESULTS)

    return [Article.from_result(result) for result in results if isinstance(result, dict)]

def decode_listing(body: bytes) -> str:
    """Decode and validate a fetched body; only text that parses is ever cached."""
    try:
        text = body.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ParseError(MSG_ERROR_NOT_UTF8) from e
    parse_listing(text)
    return text

def strip_non_printable(text: str) -> str:
    return ''.join(ch for ch in text if ch.isprintable())

def truncate_title(title: str, max_length: int = DEFAULT_MAX_TITLE_LENGTH) -> str:
    if len(title) <= max_length:
        return title
    return title[:max_length] + TITLE_ELLIPSIS

def apply_display_limit(articles: Sequence[Article], limit: int) -> List[Article]:
    """First ``limit`` articles, or all of them when ``limit`` is 0."""
    if limit < 0:
        raise ValueError("Display limit must be >= 0")
    if limit == 0:
        return list(articles)
    return list(articles[:limit])

# ============================================================================
# SECTION CACHE MANAGER
# ============================================================================

@dataclass
class ListingResult:
    """Outcome of a cache lookup: either a listing or the error that prevented one."""
    topic: str
    listing: Optional[str] = None
    error: Optional[TimesCliError] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SectionCacheManager:
    """
    Serves section listings from the cache, fetching at most once per topic per day.

    The store is only mutated after a fetch succeeds and its body parses, so a
    failed refresh leaves the previously cached listing untouched.
    """

    def __init__(self, cache: SectionCache, settings: Settings, fetcher):
        self.cache = cache
        self.settings = settings
        self.fetcher = fetcher

    def get_or_refresh(self, topic: str, today: date) -> ListingResult:
        topic = canonicalize_topic(topic)
        if isinstance(today, datetime):
            today = today.date()

        entry = self.cache.get_entry(topic)
        if entry is not None and entry.last_fetch_date == today:
            logger.debug(MSG_DEBUG_CACHE_HIT.format(topic=topic, date=entry.last_fetch_date))
            return ListingResult(topic=topic, listing=entry.raw_listing, from_cache=True)

        logger.debug(MSG_DEBUG_CACHE_MISS.format(topic=topic, date=entry.last_fetch_date if entry else "never"))
        try:
            listing = self._refresh(topic)
        except (FetchError, RemoteError, ParseError) as e:
            logger.debug(MSG_DEBUG_REFRESH_FAILED.format(topic=topic, error=e))
            return ListingResult(topic=topic, error=e)

        self.cache.put_entry(CacheEntry(topic=topic, last_fetch_date=today, raw_listing=listing))
        logger.debug(MSG_DEBUG_CACHE_STORED.format(topic=topic, date=today))
        return ListingResult(topic=topic, listing=listing)

    def _refresh(self, topic: str) -> str:
        credential = self.settings.api_key
        if not credential:
            raise FetchError(MSG_ERROR_NO_API_KEY)
        status_code, body = self.fetcher.fetch(topic, credential)
        if status_code != HTTP_OK:
            raise RemoteError(status_code)
        return decode_listing(body)

# ============================================================================
# INTERACTIVE INPUT
# ============================================================================

class Prompter:
    """The single ordered source of user input, plus the stream prompts are written to."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout

    def __enter__(self) -> "Prompter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stdout.flush()

    def say(self, text: str = "") -> None:
        self.stdout.write(text + "\n")

    def ask(self, prompt: str) -> str:
        """Write ``prompt`` and read one line. Raises EOFError when input is exhausted."""
        self.stdout.write(prompt)
        self.stdout.flush()
        line = self.stdin.readline()
        if not line:
            raise EOFError
        return line.strip()


def parse_integer(text: str) -> int:
    """Parse plain ASCII decimal digits with an optional sign; anything else is an InputError."""
    if not DECIMAL_PATTERN.fullmatch(text):
        raise InputError(f"Not a number: {text!r}")
    return int(text)

def parse_selection(text: str, upper: int) -> int:
    selection = parse_integer(text)
    if not 1 <= selection <= upper:
        raise InputError(f"Out of range: {selection}")
    return selection

def parse_display_limit(text: str) -> int:
    limit = parse_integer(text)
    if limit < 0:
        raise InputError(f"Negative limit: {limit}")
    return limit

def read_selection(prompter: Prompter, upper: int) -> int:
    """Prompt until the user enters an integer in [1, upper]."""
    while True:
        try:
            return parse_selection(prompter.ask(MSG_PROMPT_SELECTION.format(upper=upper)), upper)
        except InputError:
            prompter.say(MSG_INVALID_SELECTION)

# ============================================================================
# ARTICLE BROWSER
# ============================================================================

@dataclass
class BrowserOutcome:
    shown: int
    viewed: List[int] = field(default_factory=list)


class ArticleBrowser:
    """
    Numbered article menu for one listing.

    The loop alternates between the listing menu and an article's detail view;
    the only way out is the trailing "Back" item (or the end of input).
    """

    def __init__(self, prompter: Prompter, max_title_length: int = DEFAULT_MAX_TITLE_LENGTH):
        self.prompter = prompter
        self.max_title_length = max_title_length

    def menu_lines(self, articles: Sequence[Article]) -> List[str]:
        lines = [
            f"\t{number}. {truncate_title(strip_non_printable(article.title), self.max_title_length)}"
            for number, article in enumerate(articles, start=1)
        ]
        lines.append(f"\t{len(articles) + 1}. {MSG_MENU_BACK}")
        return lines

    def show_menu(self, lines: Sequence[str]) -> None:
        self.prompter.say(MSG_ARTICLE_MENU_HEADER)
        for line in lines:
            self.prompter.say(line)

    def show_detail(self, article: Article) -> None:
        self.prompter.say()
        self.prompter.say(strip_non_printable(article.title))
        byline = strip_non_printable(article.byline)
        if byline:
            self.prompter.say(byline)
        self.prompter.say(strip_non_printable(article.short_url))
        abstract = strip_non_printable(article.abstract)
        if abstract:
            self.prompter.say()
            self.prompter.say(abstract)

    def render(self, raw_listing: str, limit: int) -> BrowserOutcome:
        shown = apply_display_limit(parse_listing(raw_listing), limit)
        lines = self.menu_lines(shown)
        back = len(shown) + 1
        outcome = BrowserOutcome(shown=len(shown))

        self.show_menu(lines)
        while True:
            selection = read_selection(self.prompter, back)
            if selection == back:
                return outcome
            outcome.viewed.append(selection)
            self.show_detail(shown[selection - 1])
            self.show_menu(lines)

# ============================================================================
# SESSION CONTROLLER
# ============================================================================

class Session:
    """Top-level menu loop. Owns the store's lifecycle: it is saved on every way out."""

    def __init__(self, store: KeyValueStore, settings: Settings, manager: SectionCacheManager,
                 browser: ArticleBrowser, prompter: Prompter,
                 clock: Optional[Callable[[], date]] = None):
        self.store = store
        self.settings = settings
        self.manager = manager
        self.browser = browser
        self.prompter = prompter
        self.clock = clock or date.today
        self.menu = list(KNOWN_TOPICS) + [ACTION_RESET_KEY, ACTION_SET_LIMIT, ACTION_EXIT]

    def run(self) -> None:
        try:
            if not self.settings.api_key:
                self.acquire_api_key()

            while True:
                choice = self.select_menu_item()
                if choice == ACTION_EXIT:
                    break
                elif choice == ACTION_RESET_KEY:
                    self.acquire_api_key()
                elif choice == ACTION_SET_LIMIT:
                    self.change_display_limit()
                else:
                    self.show_section(choice)
        except EOFError:
            logger.info(MSG_INFO_END_OF_INPUT)
        finally:
            self.finish()

    def select_menu_item(self) -> str:
        labels = {
            ACTION_RESET_KEY: MSG_MENU_RESET_KEY,
            ACTION_SET_LIMIT: MSG_MENU_SET_LIMIT,
            ACTION_EXIT: MSG_MENU_EXIT,
        }
        self.prompter.say()
        self.prompter.say(MSG_MAIN_MENU_HEADER)
        for number, item in enumerate(self.menu, start=1):
            self.prompter.say(f"\t{number}. {labels.get(item) or topic_display_name(item)}")
        return self.menu[read_selection(self.prompter, len(self.menu)) - 1]

    def acquire_api_key(self) -> None:
        for line in MSG_API_KEY_INSTRUCTIONS:
            self.prompter.say(line)
        while True:
            api_key = self.prompter.ask(MSG_PROMPT_API_KEY)
            if is_api_key_valid(api_key):
                break
            self.prompter.say(MSG_INVALID_KEY)
        self.settings.api_key = api_key
        self.prompter.say(MSG_KEY_SAVED)

    def change_display_limit(self) -> None:
        self.prompter.say(MSG_CURRENT_LIMIT.format(label=self.settings.display_limit or MSG_NO_LIMIT))
        while True:
            try:
                limit = parse_display_limit(self.prompter.ask(MSG_PROMPT_LIMIT))
                break
            except InputError:
                self.prompter.say(MSG_INVALID_LIMIT)
        self.settings.display_limit = limit
        self.prompter.say(MSG_LIMIT_SAVED.format(label=limit or MSG_NO_LIMIT))

    def show_section(self, topic: str) -> None:
        result = self.manager.get_or_refresh(topic, self.clock())
        if not result.ok:
            self.report_error(result.error)
            return
        if not result.from_cache:
            self.store.save()

        try:
            self.browser.render(result.listing, self.settings.display_limit)
        except ParseError as e:
            logger.warning(MSG_ERROR_UNREADABLE_LISTING.format(topic=topic, error=e))
            self.prompter.say(MSG_LISTING_UNREADABLE)

    def report_error(self, error: TimesCliError) -> None:
        if isinstance(error, RemoteError):
            self.prompter.say(MSG_REMOTE_FAILED)
            self.prompter.say(MSG_RESPONSE_CODE.format(status_code=error.status_code))
        elif isinstance(error, ParseError):
            self.prompter.say(MSG_PARSE_FAILED)
        else:
            self.prompter.say(MSG_FETCH_FAILED)
            self.prompter.say(f"ERROR: {error}")

    def finish(self) -> None:
        self.prompter.say(MSG_EXITING)
        self.store.save()

# ============================================================================
# MAIN EXECUTION
# ============================================================================

def build_session(config: Dict, prompter: Prompter, fetcher=None,
                  clock: Optional[Callable[[], date]] = None) -> Session:
    """Wire the store, cache manager and browser together from configuration."""
    store_path = os.path.expanduser(get_config_value(config, 'storage.path', DEFAULT_STORE_PATH))
    store = KeyValueStore(store_path).load()

    if fetcher is None:
        fetcher = TopStoriesFetcher(
            base_url=get_config_value(config, 'api.base_url', DEFAULT_BASE_URL),
            timeout=get_config_value(config, 'api.timeout_seconds', DEFAULT_TIMEOUT_SECONDS),
        )

    settings = Settings(store)
    manager = SectionCacheManager(SectionCache(store), settings, fetcher)
    browser = ArticleBrowser(
        prompter,
        max_title_length=get_config_value(config, 'display.max_title_length', DEFAULT_MAX_TITLE_LENGTH),
    )
    return Session(store, settings, manager, browser, prompter, clock=clock)

def main(config: Optional[Dict] = None, prompter: Optional[Prompter] = None, fetcher=None,
         clock: Optional[Callable[[], date]] = None):
    """Load configuration and saved data, then run the interactive session."""
    if config is None:
        config = load_config()
    with (prompter or Prompter()) as active_prompter:
        build_session(config, active_prompter, fetcher=fetcher, clock=clock).run()

def run_cli():
    """Entry point wrapper that handles CLI execution and exit codes."""
    try:
        main()
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info(f"\n{MSG_INFO_INTERRUPTED}")
        sys.exit(1)
    except StoreError as e:
        logger.critical(f"{MSG_FATAL_ERROR}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"\n{MSG_FATAL_ERROR}: {MSG_ERROR_UNEXPECTED_MAIN}: {e}")
        logger.critical(traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    run_cli()
