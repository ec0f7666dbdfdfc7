"""Centralized timing and search limits."""

# Settle delays (seconds)
APP_FOCUS_DELAY = 0.2
NATIVE_REACTION_DELAY = 0.3
SYNTHETIC_CLICK_DELAY = 0.15
MODIFIER_CLEAR_DELAY = 0.01
HOTKEY_PROCESS_DELAY = 0.2
TYPE_CHAR_DELAY = 0.01
FOCUS_RETRY_DELAY = 0.3
FOCUS_RETRY_LONG_DELAY = 0.5
FOCUS_VERIFY_DELAY = 0.1
WINDOW_RAISE_DELAY = 0.1
SET_VALUE_DELAY = 0.15
CLEAR_FIELD_DELAY = 0.05
FOCUS_ELEMENT_DELAY = 0.1
READBACK_DELAY = 0.15
RECIPE_FOCUS_DELAY = 0.3

# Search limits
SEMANTIC_DEPTH_BUDGET = 25
MAX_SEARCH_DEPTH = 100
DOM_ID_SEARCH_DEPTH = 50
WAIT_ELEMENT_SEARCH_DEPTH = 15
CONTEXT_INTERACTIVE_DEPTH = 8
SCROLLABLE_SEARCH_DEPTH = 5
WEB_AREA_SEARCH_DEPTH = 10
MAX_SEARCH_RESULTS = 50
MAX_CANDIDATES_SCANNED = 100
MAX_INTERACTIVE_ELEMENTS = 30

# Verification
READBACK_PREFIX_LENGTH = 10
READBACK_TRUNCATION = 200
FIELD_SCORE_THRESHOLD = 50

# Waiting
DEFAULT_WAIT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_DELAY_SECONDS = 0.5

# Resolution cache TTLs (seconds)
NODE_CACHE_TTL = 2.0
PATH_HINT_TTL = 10.0

# Scrolling
DEFAULT_SCROLL_AMOUNT = 3

DEFAULT_BROWSER = "Google Chrome"
