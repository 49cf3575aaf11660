DEFAULT_JOB_PRIORITY = 5
DEFAULT_JOB_MAX_ATTEMPTS = 3
FOLLOW_UP_JOB_PRIORITY = 4

# Retry delay is 2**attempts minutes
BACKOFF_BASE_MINUTES = 1

ROBOTS_BLOCKED_ERROR = "Blocked by robots.txt"
LEASE_EXPIRED_ERROR = "Job lease expired while processing"

# Likely-informative pages crawled first for every domain
SEED_PATHS: tuple[str, ...] = (
    "/",
    "/about",
    "/about-us",
    "/contact",
    "/contact-us",
    "/team",
    "/our-team",
    "/careers",
    "/jobs",
    "/blog",
    "/news",
    "/products",
    "/services",
)

CRAWL_CACHE_PREFIX = "crawl:"

# Dispatch history kept by the rate limiter for recent_count()
REQUEST_HISTORY_MINUTES = 60
