"""Context fingerprint comparison and extraction.

The predicates here are pure: they compare the eight tracked fields of two
contexts and never touch storage.  Inputs may be :class:`ContextData`, the
stored records (``UserContext`` / ``SuspiciousLogin``) or plain mappings using
either snake_case or the wire ``deviceType`` key.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Union

from agora.auth.models import CONTEXT_FIELDS, ContextData

UNKNOWN = "unknown"

ContextLike = Union[ContextData, Mapping[str, Any], Any]

_MISSING = object()


def _field(ctx: ContextLike, name: str) -> Any:
    """Read one tracked field; absent fields yield a sentinel distinct from None."""
    if isinstance(ctx, Mapping):
        if name in ctx:
            return ctx[name]
        if name == "device_type" and "deviceType" in ctx:
            return ctx["deviceType"]
        return _MISSING
    return getattr(ctx, name, _MISSING)


def _same(old: Any, new: Any) -> bool:
    # Strict: an absent field equals only another absent field, never None.
    return old == new


def is_old_data_matched(old: ContextLike, new: ContextLike) -> bool:
    """Return True only if all eight tracked fields are strictly equal."""
    return all(_same(_field(old, name), _field(new, name)) for name in CONTEXT_FIELDS)


def is_suspicious_context_changed(old: ContextLike, new: ContextLike) -> bool:
    """Return True if any tracked field differs between ``old`` and ``new``."""
    return any(not _same(_field(old, name), _field(new, name)) for name in CONTEXT_FIELDS)


def is_trusted_device(candidate: ContextLike, trusted: ContextLike) -> bool:
    """Return True if ``candidate`` exactly matches a trusted baseline."""
    return is_old_data_matched(trusted, candidate)


def as_context(ctx: ContextLike) -> ContextData:
    """Normalise any supported context shape to :class:`ContextData`."""
    if isinstance(ctx, ContextData):
        return ctx
    if isinstance(ctx, Mapping):
        return ContextData.from_mapping(ctx)
    return ContextData(**{name: getattr(ctx, name, None) for name in CONTEXT_FIELDS})


# ---------------------------------------------------------------------------
# Request fingerprinting
# ---------------------------------------------------------------------------

# (label, pattern) -- first match wins, so more specific agents come first.
_BROWSER_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
]

_OS_PATTERNS: list[tuple[str, str, re.Pattern[str]]] = [
    # (os label, platform, pattern)
    ("Windows 10", "Windows", re.compile(r"Windows NT 10\.0")),
    ("Windows 8.1", "Windows", re.compile(r"Windows NT 6\.3")),
    ("Windows 7", "Windows", re.compile(r"Windows NT 6\.1")),
    ("Windows", "Windows", re.compile(r"Windows")),
    ("iOS", "iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Android", "Android", re.compile(r"Android")),
    ("Mac OS", "MacIntel", re.compile(r"Mac OS X")),
    ("Chrome OS", "Linux", re.compile(r"CrOS")),
    ("Linux", "Linux", re.compile(r"Linux")),
]

_DEVICE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("iPad", re.compile(r"iPad")),
    ("iPhone", re.compile(r"iPhone")),
    ("Android", re.compile(r"Android")),
]

_TABLET = re.compile(r"iPad|Tablet", re.IGNORECASE)
_MOBILE = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile", re.IGNORECASE)
_BOT = re.compile(r"bot|crawler|spider|curl|wget|python-requests|httpx", re.IGNORECASE)

_COUNTRY_HEADERS = ("cf-ipcountry", "x-geo-country", "x-country-code")
_CITY_HEADERS = ("x-geo-city", "x-city")


def parse_user_agent(user_agent: str) -> dict[str, str]:
    """Extract browser, os, platform, device and device type from a User-Agent."""
    ua = user_agent or ""
    browser = UNKNOWN
    for label, pattern in _BROWSER_PATTERNS:
        m = pattern.search(ua)
        if m:
            browser = f"{label} {m.group(1)}"
            break

    os_name, platform = UNKNOWN, UNKNOWN
    for label, plat, pattern in _OS_PATTERNS:
        if pattern.search(ua):
            os_name, platform = label, plat
            break

    device = UNKNOWN
    for label, pattern in _DEVICE_PATTERNS:
        if pattern.search(ua):
            device = label
            break

    if not ua:
        device_type = UNKNOWN
    elif _BOT.search(ua):
        device_type = "Bot"
    elif _TABLET.search(ua) or ("Android" in ua and "Mobile" not in ua):
        device_type = "Tablet"
    elif _MOBILE.search(ua):
        device_type = "Mobile"
    else:
        device_type = "Desktop"

    return {
        "browser": browser,
        "os": os_name,
        "platform": platform,
        "device": device,
        "device_type": device_type,
    }


def context_from_request(headers: Mapping[str, str], client_host: Optional[str]) -> ContextData:
    """Derive a context fingerprint from request headers and the peer address."""
    lowered = {k.lower(): v for k, v in headers.items()}

    forwarded = lowered.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (client_host or UNKNOWN)

    country = next((lowered[h] for h in _COUNTRY_HEADERS if lowered.get(h)), UNKNOWN)
    city = next((lowered[h] for h in _CITY_HEADERS if lowered.get(h)), UNKNOWN)

    return ContextData(ip=ip, country=country, city=city, **parse_user_agent(lowered.get("user-agent", "")))
