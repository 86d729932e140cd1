"""
Request enrichment - user agent parsing, bot filtering and referrer cleanup.
"""
import re
from typing import Any, Optional
from urllib.parse import urlparse

from user_agents import parse as parse_ua

from beacon.core.logging import get_logger

logger = get_logger(__name__)

# Signatures missed by the user-agents bot list
BOT_PATTERNS = [
    r"bot", r"crawler", r"spider", r"scraper", r"curl", r"wget",
    r"python-requests", r"python-httpx", r"axios", r"go-http-client",
    r"facebookexternalhit", r"headlesschrome", r"phantomjs",
    r"puppeteer", r"playwright", r"selenium", r"webdriver",
]
BOT_RE = re.compile("|".join(BOT_PATTERNS), re.IGNORECASE)

UNKNOWN_UA = {
    "device_type": "unknown",
    "browser": "Unknown",
    "browser_version": "",
    "os": "Unknown",
    "os_version": "",
    "is_bot": False,
}


def parse_user_agent(user_agent: str) -> dict[str, Any]:
    """
    Parse a User-Agent header into device, browser and OS.

    Returns:
        Dictionary with device_type, browser, browser_version, os,
        os_version and is_bot
    """
    if not user_agent:
        return dict(UNKNOWN_UA)

    try:
        ua = parse_ua(user_agent)
    except Exception as e:
        logger.error("User agent parse failed", error=str(e), user_agent=user_agent)
        return dict(UNKNOWN_UA)

    if ua.is_mobile:
        device_type = "mobile"
    elif ua.is_tablet:
        device_type = "tablet"
    elif ua.is_pc:
        device_type = "desktop"
    else:
        device_type = "unknown"

    return {
        "device_type": device_type,
        "browser": ua.browser.family,
        "browser_version": ua.browser.version_string,
        "os": ua.os.family,
        "os_version": ua.os.version_string,
        "is_bot": ua.is_bot,
    }


def detect_bot(user_agent: str, ua_data: Optional[dict[str, Any]] = None) -> bool:
    """True when the request looks automated. Empty or very short agents count."""
    if not user_agent or len(user_agent) < 10:
        return True
    if ua_data and ua_data.get("is_bot"):
        return True
    return bool(BOT_RE.search(user_agent))


def extract_referrer_domain(referrer: Optional[str]) -> Optional[str]:
    """Hostname of a referrer URL without its www. prefix."""
    if not referrer:
        return None
    try:
        domain = urlparse(referrer).hostname or ""
    except ValueError:
        return None

    if domain.startswith("www."):
        domain = domain[4:]
    return domain or None


def client_ip(forwarded_for: Optional[str], real_ip: Optional[str], peer: Optional[str]) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return real_ip or peer or "127.0.0.1"
