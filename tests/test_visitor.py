# ==============================================================================
# Tests for Visitor Context
# ==============================================================================
"""
Unit tests for the visitor fingerprint and user agent parsing.
"""

from attribution.core.visitor import build_fingerprint, parse_device

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class TestFingerprint:
    """Tests for build_fingerprint()."""

    def test_stable_for_same_inputs(self):
        a = build_fingerprint("203.0.113.7", DESKTOP_UA, "salt")
        b = build_fingerprint("203.0.113.7", DESKTOP_UA, "salt")

        assert a == b
        assert len(a) == 64

    def test_salt_changes_fingerprint(self):
        assert build_fingerprint("203.0.113.7", DESKTOP_UA, "a") != build_fingerprint(
            "203.0.113.7", DESKTOP_UA, "b"
        )

    def test_fields_do_not_run_together(self):
        """Moving characters between IP and user agent changes the hash."""
        assert build_fingerprint("1.2.3.4", "5", "s") != build_fingerprint("1.2.3.", "45", "s")

    def test_no_inputs_gives_none(self):
        assert build_fingerprint(None, "  ", "salt") is None


class TestParseDevice:
    """Tests for parse_device()."""

    def test_mobile(self):
        device = parse_device(IPHONE_UA)
        assert device.device_type == "mobile"
        assert device.os == "iOS"

    def test_desktop(self):
        device = parse_device(DESKTOP_UA)
        assert device.device_type == "desktop"
        assert device.browser == "Chrome"
        assert device.os == "Windows"

    def test_missing_user_agent(self):
        assert parse_device(None) is None
        assert parse_device("") is None
