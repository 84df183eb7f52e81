"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
"""

MIB: int = 1024 * 1024

# Files strictly larger than this go through the resumable protocol.
DEFAULT_THRESHOLD_BYTES: int = 200 * MIB

DEFAULT_CHUNK_SIZE_BYTES: int = 50 * MIB

# Delay (seconds) before each send of a chunk; the first send is immediate,
# later attempts use the next entry, capped at the last one.
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (0.0, 3.0, 5.0, 10.0, 20.0)

DEFAULT_POLL_INTERVAL_SECONDS: float = 5.0
DEFAULT_POLL_ATTEMPT_BUDGET: int = 12

DEFAULT_MAX_DURATION_SECONDS: int = 3600

API_BASE: str = "https://api.cloudflare.com/client/v4/accounts"
DEFAULT_WATCH_DOMAIN: str = "watch.cloudflarestream.com"

TUS_VERSION: str = "1.0.0"
