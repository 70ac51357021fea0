"""Tests for semantic versions and version ranges."""

import pytest

from harness.plugins import versioning
from harness.plugins.errors import InvalidVersionRange


class TestSemver:
    """Tests for is_valid_semver."""

    @pytest.mark.parametrize("value", ["1.0.0", "0.1.2", "10.20.30", "1.0.0-beta.1", "1.0.0+build.5"])
    def test_valid(self, value):
        """Well-formed versions are accepted."""
        assert versioning.is_valid_semver(value)

    @pytest.mark.parametrize("value", ["1.0", "v1.0.0", "01.0.0", "1.0.0.0", "", None, 100])
    def test_invalid(self, value):
        """Partial, prefixed and non-string versions are rejected."""
        assert not versioning.is_valid_semver(value)

    def test_prerelease_sorts_below_release(self):
        """Pre-releases order before the final version, including non-PEP 440 tags."""
        assert versioning.to_version("1.0.0-rc.1") < versioning.to_version("1.0.0")
        assert versioning.to_version("1.0.0-nightly") < versioning.to_version("1.0.0")


class TestSatisfies:
    """Tests for range matching."""

    @pytest.mark.parametrize("version,range_text", [
        ("1.4.0", ">=1.0.0"),
        ("1.9.9", "^1.2.0"),
        ("0.2.5", "^0.2.0"),
        ("1.2.9", "~1.2.0"),
        ("1.7.0", "1.x"),
        ("1.5.0", ">=1.0.0 <2.0.0"),
        ("1.4.0", "1.0.0 - 1.4.0"),
        ("2.1.0", "^1.0.0 || ^2.0.0"),
        ("3.0.0", "*"),
        ("1.2.3", "1.2.3"),
        ("1.4.0", ">= 1.4.0"),
    ])
    def test_matches(self, version, range_text):
        """Versions inside the range satisfy it."""
        assert versioning.satisfies(version, range_text)

    @pytest.mark.parametrize("version,range_text", [
        ("2.0.0", "^1.2.0"),
        ("0.3.0", "^0.2.0"),
        ("1.3.0", "~1.2.0"),
        ("0.9.0", ">=1.0.0"),
        ("1.4.1", "1.0.0 - 1.4.0"),
        ("3.0.0", "^1.0.0 || ^2.0.0"),
        ("2.0.0-beta.1", ">=2.0.0"),
    ])
    def test_rejects(self, version, range_text):
        """Versions outside the range do not satisfy it."""
        assert not versioning.satisfies(version, range_text)

    def test_bad_input_returns_false(self):
        """satisfies never raises on malformed input."""
        assert versioning.satisfies("not-a-version", ">=1.0.0") is False
        assert versioning.satisfies("1.0.0", ">=banana") is False


class TestParseRange:
    """Tests for parse_range."""

    def test_invalid_range_raises(self):
        """Malformed ranges raise InvalidVersionRange."""
        with pytest.raises(InvalidVersionRange):
            versioning.parse_range(">=one.two")

    def test_non_string_raises(self):
        """Only strings can be ranges."""
        with pytest.raises(InvalidVersionRange):
            versioning.parse_range(["1.0.0"])

    def test_is_valid_range(self):
        assert versioning.is_valid_range("^1.0.0")
        assert not versioning.is_valid_range("~>1.a")
