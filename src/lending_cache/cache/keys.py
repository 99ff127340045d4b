"""Cache key namespace.

Keys are colon-separated and grouped by a leading namespace so that a whole
namespace can be invalidated with one glob pattern.
"""

PROTOCOL_STATS = "protocol:stats"
INTEREST_RATES = "rates:current"
ASSET_PRICES = "prices:current"
MARKET_DATA = "markets:data"
BRIDGE_STATUS = "bridge:status"
SYSTEM_HEALTH = "system:health"

# Namespaces wiped by a manual cache reset. ``system:*`` is left alone so the
# last health reading survives a reset.
CLEARABLE_PATTERNS: tuple[str, ...] = (
    "protocol:*",
    "markets:*",
    "rates:*",
    "price:*",
    "prices:*",
    "user:*",
    "bridge:*",
)


def asset_price(asset: str) -> str:
    return f"price:{asset}"


def user_position(address: str) -> str:
    return f"user:position:{address}"


def user_transactions(address: str, page: int = 1) -> str:
    return f"user:tx:{address}:{page}"


def as_pattern(prefix_or_pattern: str) -> str:
    """Turn a bare namespace prefix into a glob; globs pass through unchanged."""
    if any(ch in prefix_or_pattern for ch in "*?["):
        return prefix_or_pattern
    return f"{prefix_or_pattern}*"
