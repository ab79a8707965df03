# ==============================================================================
# Visitor Context
# ==============================================================================
"""
Weak visitor correlation and device details.

The fingerprint is a salted SHA-256 of IP address and user agent. It only
correlates visits loosely and is never treated as an identity.
"""

import hashlib

from user_agents import parse as parse_user_agent

from attribution.core.models import DeviceInfo


def build_fingerprint(ip_address: str | None, user_agent: str | None, salt: str) -> str | None:
    """
    Hash IP and user agent into a hex fingerprint.

    Returns:
        64-char hex digest, or None when neither input is present
    """
    ip = (ip_address or "").strip()
    ua = (user_agent or "").strip()
    if not ip and not ua:
        return None
    digest = hashlib.sha256()
    digest.update(salt.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(ip.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(ua.encode("utf-8"))
    return digest.hexdigest()


def parse_device(user_agent: str | None) -> DeviceInfo | None:
    """Extract device type, browser and OS family from a user agent string."""
    if not user_agent or not user_agent.strip():
        return None

    ua = parse_user_agent(user_agent)
    if ua.is_tablet:
        device_type = "tablet"
    elif ua.is_mobile:
        device_type = "mobile"
    elif ua.is_bot:
        device_type = "bot"
    else:
        device_type = "desktop"

    browser = ua.browser.family if ua.browser.family != "Other" else None
    os_family = ua.os.family if ua.os.family != "Other" else None
    return DeviceInfo(device_type=device_type, browser=browser, os=os_family)
