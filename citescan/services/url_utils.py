"""
URL Utilities for the CiteScan engine.

Provides:
- normalize_url: URL deduplication normalization
- extract_domain / is_same_site: host comparisons without the www prefix
- path_depth: homepage adjacency used for hub tie-breaking
- detect_platform: known social/content platforms for off-site discovery
- RobotsChecker: robots.txt compliance checker
"""

import re
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse
from urllib.robotparser import RobotFileParser

import httpx
import structlog

logger = structlog.get_logger()


# =============================================================================
# Constants
# =============================================================================

# Query parameters to strip (tracking, session, etc.)
STRIP_PARAMS = {
    "fbclid", "gclid", "session_id", "sessionid", "sid", "ref", "referrer",
    "source", "tracking", "_ga", "_gl", "mc_cid", "mc_eid", "si", "feature",
}

# Known off-site platforms and their authority (0-25)
PLATFORM_AUTHORITY = {
    "wikipedia.org": ("Wikipedia", 25),
    "youtube.com": ("YouTube", 22),
    "youtu.be": ("YouTube", 22),
    "linkedin.com": ("LinkedIn", 20),
    "reddit.com": ("Reddit", 20),
    "github.com": ("GitHub", 19),
    "medium.com": ("Medium", 17),
    "substack.com": ("Substack", 16),
    "quora.com": ("Quora", 15),
    "podcasts.apple.com": ("Apple Podcasts", 15),
    "open.spotify.com": ("Spotify", 14),
    "x.com": ("X", 14),
    "twitter.com": ("X", 14),
    "facebook.com": ("Facebook", 12),
    "instagram.com": ("Instagram", 11),
    "tiktok.com": ("TikTok", 11),
    "yelp.com": ("Yelp", 13),
    "g2.com": ("G2", 16),
    "trustpilot.com": ("Trustpilot", 14),
    "clutch.co": ("Clutch", 15),
    "crunchbase.com": ("Crunchbase", 16),
}

# Authority for any other external site found via search or manual entry
DEFAULT_PLATFORM_AUTHORITY = 8


# =============================================================================
# URL Normalization
# =============================================================================


def normalize_url(url: str) -> str:
    """Normalize URL for deduplication.

    - Strip tracking params (?utm_*, ?fbclid, etc)
    - Remove anchors (#section)
    - Remove trailing slashes except for the root path
    - Lowercase scheme and hostname, drop the www prefix
    - Sort remaining query parameters
    """
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname.lower() if parsed.hostname else ""
        if hostname.startswith("www."):
            hostname = hostname[4:]

        if parsed.port and parsed.port not in (80, 443):
            netloc = f"{hostname}:{parsed.port}"
        else:
            netloc = hostname

        path = re.sub(r"/+", "/", parsed.path) or "/"
        if path != "/":
            path = path.rstrip("/")

        if parsed.query:
            params = parse_qs(parsed.query, keep_blank_values=True)
            filtered = {
                k: v for k, v in params.items()
                if k.lower() not in STRIP_PARAMS and not k.lower().startswith("utm_")
            }
            query = urlencode(sorted(filtered.items()), doseq=True)
        else:
            query = ""

        return urlunparse(((parsed.scheme or "https").lower(), netloc, path, "", query, ""))
    except ValueError:
        return url


def extract_domain(url: str) -> str | None:
    """Extract domain from URL (or bare host) without www prefix."""
    if "://" not in url:
        url = f"https://{url}"
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.hostname:
        return None
    domain = parsed.hostname.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def domain_matches(host: str, domain: str) -> bool:
    """True if host is domain or one of its subdomains."""
    return host == domain or host.endswith(f".{domain}")


def is_same_site(url: str, domain: str) -> bool:
    host = extract_domain(url)
    site = extract_domain(domain)
    return bool(host and site and domain_matches(host, site))


def path_depth(url: str) -> int:
    """Number of non-empty path segments; the homepage is 0."""
    try:
        path = urlparse(url).path
    except ValueError:
        return 99
    return len([segment for segment in path.split("/") if segment])


def path_of(url: str) -> str:
    try:
        return urlparse(url).path or "/"
    except ValueError:
        return url


def detect_platform(url: str) -> tuple[str, int] | None:
    """Return (platform name, authority) for known platforms, else None."""
    host = extract_domain(url)
    if not host:
        return None
    for domain, info in PLATFORM_AUTHORITY.items():
        if domain_matches(host, domain):
            return info
    return None


# =============================================================================
# Robots.txt Checker
# =============================================================================


class RobotsChecker:
    """Check robots.txt compliance for crawling.

    Caches robots.txt per origin to avoid repeated fetches.
    """

    USER_AGENT = "CiteScanBot/1.0"

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self._cache: dict[str, RobotFileParser | None] = {}
        self.log = logger.bind(component="RobotsChecker")

    async def can_fetch(self, url: str) -> bool:
        """Check if URL can be fetched according to robots.txt."""
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"

        if origin not in self._cache:
            await self._fetch_robots(origin)

        rp = self._cache.get(origin)
        if rp is None:
            # No robots.txt or fetch failed - allow by default
            return True
        return rp.can_fetch(self.USER_AGENT, url)

    async def _fetch_robots(self, origin: str) -> None:
        """Fetch and parse robots.txt for an origin."""
        robots_url = f"{origin}/robots.txt"
        try:
            response = await self.client.get(robots_url, timeout=5.0)
        except httpx.HTTPError as e:
            self.log.debug("Failed to fetch robots.txt", origin=origin, error=str(e))
            self._cache[origin] = None
            return

        if response.status_code == 200:
            rp = RobotFileParser()
            rp.parse(response.text.splitlines())
            self._cache[origin] = rp
            self.log.debug("Loaded robots.txt", origin=origin)
        else:
            self._cache[origin] = None
