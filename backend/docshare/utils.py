import secrets
import string
from typing import Optional
from datetime import datetime, timezone
from user_agents import parse as parse_user_agent  # type: ignore

from .config import settings

# URL-safe alphabet (same 64 characters nanoid uses)
LINK_ID_ALPHABET = string.ascii_letters + string.digits + "_-"

UNKNOWN = "unknown"

# Width of the ip_address column
MAX_IP_LENGTH = 64


def generate_link_id(length: Optional[int] = None) -> str:
    """Generate an unguessable, URL-safe link identifier.

    Draws from the OS CSPRNG via ``secrets``; if no entropy source is
    available the call raises instead of degrading.
    """
    if length is None:
        length = settings.LINK_ID_LENGTH
    return ''.join(secrets.choice(LINK_ID_ALPHABET) for _ in range(length))


def _first_present(*candidates: Optional[str]) -> Optional[str]:
    for value in candidates:
        if value is not None and value.strip():
            return value.strip()
    return None


def resolve_client_ip(
    explicit: Optional[str],
    forwarded_for: Optional[str],
    remote_addr: Optional[str],
) -> str:
    """Pick the viewer IP: payload value, then proxy header, then socket peer.

    The result is clipped to MAX_IP_LENGTH.
    """
    forwarded_first = forwarded_for.split(",")[0] if forwarded_for else None
    ip = _first_present(explicit, forwarded_first, remote_addr) or UNKNOWN
    return ip[:MAX_IP_LENGTH]


def resolve_user_agent(explicit: Optional[str], header: Optional[str]) -> str:
    """Pick the viewer user agent: payload value, then request header."""
    return _first_present(explicit, header) or UNKNOWN


def detect_user_agent_type(user_agent_string: Optional[str]) -> str:
    """Detect device type from user agent."""
    if not user_agent_string or user_agent_string == UNKNOWN:
        return UNKNOWN

    try:
        user_agent = parse_user_agent(user_agent_string)

        if user_agent.is_bot:
            return "bot"
        elif user_agent.is_mobile:
            return "mobile"
        elif user_agent.is_tablet:
            return "tablet"
        elif user_agent.is_pc:
            return "desktop"
        else:
            return "other"
    except Exception:
        return UNKNOWN


def utc_now() -> datetime:
    """Return timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def normalize_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC (assume naive is UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
