from __future__ import annotations

SCHOLAR_BASE = "https://scholar.google.com"
SCHOLAR_SEARCH_URL = f"{SCHOLAR_BASE}/scholar"
SCHOLAR_PROFILE_URL = f"{SCHOLAR_BASE}/citations"

# Scholar sends the cite dialog through a referer check; the original client
# used the Google home page
DEFAULT_REFERER = "https://www.google.com/"

DEFAULT_LANGUAGE = "en"

# "as_sdt=0,5" is the value Scholar puts in its own search form (articles,
# include patents off)
SEARCH_AS_SDT = "0,5"

# Result pages
# Scholar search returns 10 results per page unless "num" is given and never
# more than 20; profile tables default to 20 rows and accept up to 100
SEARCH_PAGE_SIZE_DEFAULT = 10
SEARCH_PAGE_SIZE_MAX = 20
PROFILE_PAGE_SIZE_DEFAULT = 20
PROFILE_PAGE_SIZE_MAX = 100

# Structure version used when a caller does not pick one explicitly.
# Bump this together with a new extraction strategy when Scholar's markup drifts.
DEFAULT_STRUCTURE_VERSION = "2023"

# HTTP request configuration
# Default timeout for HTTP requests (in seconds)
HTTP_TIMEOUT_DEFAULT = 15.0
HTTP_TIMEOUT_SHORT = 10.0

# Exponential backoff configuration for retries
HTTP_BACKOFF_INITIAL = 1.0   # Initial backoff delay in seconds
HTTP_BACKOFF_MAX = 16.0      # Maximum backoff delay in seconds
HTTP_MAX_RETRIES = 3         # Retries per page after the first attempt

# Connection pool size of the shared session; one slot per concurrent scrape
HTTP_POOL_MAXSIZE = 8

# wait between successive result pages of one scrape
REQUEST_DELAY_BETWEEN_PAGES = 2.0

# Response classification
# These are heuristics observed on Scholar responses, not a documented
# contract. BlockPolicy takes them as defaults and callers may override them.
RATE_LIMIT_STATUS_CODES = (429,)
BLOCK_STATUS_CODES = (401, 403)
NOT_FOUND_STATUS_CODES = (404, 410)
TRANSIENT_STATUS_CODES = (408, 500, 502, 503, 504)

# Google redirects refused clients to its "sorry" interstitial
BLOCK_URL_MARKERS = ("/sorry/",)

# markup of the CAPTCHA / "unusual traffic" interstitial
BLOCK_PAGE_SELECTORS = (
    "form#gs_captcha_f",
    "#gs_captcha_ccl",
    "form#captcha-form",
    "form[action*='/sorry/']",
)

# lowercase text of the interstitial, only consulted when the body holds no
# result or profile container
BLOCK_PAGE_SIGNATURES = (
    "unusual traffic from your computer network",
    "not a robot",
    "/sorry/index",
)

# containers that only appear on genuine result and profile pages
RESULT_CONTAINER_SELECTORS = ("#gs_res_ccl_mid", "#gs_res_ccl", "#gsc_a_b")

# Worker threads used when several queries are scraped at once
DEFAULT_WORKERS = 4

# BibTeX generation configuration
# Maximum words to use from title for citation key generation
BIBTEX_KEY_MAX_WORDS = 1

# Valid year range for publications
VALID_YEAR_MIN = 1900
VALID_YEAR_MAX = 2099
