"""Request metadata helpers (device class, browser, anonymized IP)."""

import re

from giftghost.models.enums import DeviceType

_TABLET_RE = re.compile(r"tablet|ipad|playbook|silk", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobile|android|pocket|psp|symbian|windows phone", re.IGNORECASE)


def parse_device_type(user_agent: str | None) -> str:
    if not user_agent:
        return DeviceType.DESKTOP.value
    if _TABLET_RE.search(user_agent):
        return DeviceType.TABLET.value
    if _MOBILE_RE.search(user_agent):
        return DeviceType.MOBILE.value
    return DeviceType.DESKTOP.value


def parse_browser_info(user_agent: str | None) -> dict[str, str]:
    """Coarse browser/OS names. Order matters: Edge UAs also say Chrome, iOS UAs say Mac."""
    if not user_agent:
        return {"browser": "Unknown", "os": "Unknown"}

    browser = "Unknown"
    if "Edg" in user_agent:
        browser = "Edge"
    elif "Firefox" in user_agent:
        browser = "Firefox"
    elif "Chrome" in user_agent:
        browser = "Chrome"
    elif "Safari" in user_agent:
        browser = "Safari"

    os_name = "Unknown"
    if "iPhone" in user_agent or "iPad" in user_agent or "iOS" in user_agent:
        os_name = "iOS"
    elif "Android" in user_agent:
        os_name = "Android"
    elif "Windows" in user_agent:
        os_name = "Windows"
    elif "Mac" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"

    return {"browser": browser, "os": os_name}


def anonymize_ip(ip: str | None) -> str | None:
    """Keep only the network prefix: first two IPv4 octets or IPv6 groups."""
    if not ip:
        return None
    if ":" in ip:
        groups = [g for g in ip.split(":") if g]
        if len(groups) >= 2:
            return f"{groups[0]}:{groups[1]}::"
        return "xxxx::"
    parts = ip.split(".")
    if len(parts) >= 2:
        return f"{parts[0]}.{parts[1]}.xxx.xxx"
    return "xxx.xxx.xxx.xxx"
