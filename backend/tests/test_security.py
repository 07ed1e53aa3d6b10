"""Tests for sandbox/security.py -- command denylist and output truncation.

The validator is the only thing standing between a stored task and a
provisioned sandbox unit, so word boundaries and case handling are tested
explicitly alongside the plain denylist entries.
"""

import pytest

from sandbox.security import (
    FORBIDDEN_PATTERNS,
    is_safe,
    sanitize_output,
    validate_command,
)

# =========================================================================
# validate_command -- happy paths
# =========================================================================


class TestValidateCommandAllowed:
    """Commands that SHOULD be allowed."""

    def test_echo(self) -> None:
        ok, err = validate_command("echo Hello World!")
        assert ok is True
        assert err == ""

    def test_ls_flag(self) -> None:
        ok, _ = validate_command("ls -la /tmp")
        assert ok is True

    @pytest.mark.parametrize(
        "cmd",
        [
            "format disk",
            "perform task",
            "npm install",
            "storm warning",
            "echo firmware",
            "trim output",
        ],
    )
    def test_rm_inside_word(self, cmd: str) -> None:
        """'rm' only matches as a whole word."""
        ok, err = validate_command(cmd)
        assert ok is True, f"{cmd!r} should be allowed: {err}"

    @pytest.mark.parametrize("cmd", ["pseudorandom", "sudoku solver", "rebooted"])
    def test_denied_words_inside_longer_words(self, cmd: str) -> None:
        assert validate_command(cmd)[0] is True

    @pytest.mark.parametrize("cmd", ["ls | wc -l", "echo hi > out.txt", "true && echo ok"])
    def test_shell_operators_not_on_denylist(self, cmd: str) -> None:
        assert validate_command(cmd)[0] is True

    def test_dollar_without_paren(self) -> None:
        ok, _ = validate_command("echo $HOME")
        assert ok is True


# =========================================================================
# validate_command -- missing / empty
# =========================================================================


class TestValidateCommandEmpty:
    """Missing and blank commands are unsafe."""

    def test_none(self) -> None:
        ok, err = validate_command(None)
        assert ok is False
        assert "missing" in err.lower()

    def test_empty_string(self) -> None:
        ok, err = validate_command("")
        assert ok is False
        assert "empty" in err.lower()

    def test_whitespace_only(self) -> None:
        ok, err = validate_command("   \t\n")
        assert ok is False
        assert "empty" in err.lower()


# =========================================================================
# validate_command -- denylist
# =========================================================================


class TestValidateCommandDenied:
    """Commands that MUST be rejected."""

    @pytest.mark.parametrize(
        "cmd",
        [
            "rm file.txt",
            "rm -rf /",
            "sudo ls",
            "shutdown -h now",
            "reboot",
            "echo a; echo b",
            "echo $(whoami)",
            "echo `whoami`",
        ],
    )
    def test_denied(self, cmd: str) -> None:
        ok, err = validate_command(cmd)
        assert ok is False, f"{cmd!r} should be rejected"
        assert err

    @pytest.mark.parametrize("cmd", ["RM file", "Sudo ls", "SHUTDOWN now", "ReBoOt"])
    def test_case_insensitive(self, cmd: str) -> None:
        assert validate_command(cmd)[0] is False

    def test_rm_rf_reason_is_specific(self) -> None:
        _, err = validate_command("rm -rf /tmp/x")
        assert "rm -rf" in err

    def test_plain_rm_reason(self) -> None:
        _, err = validate_command("rm notes.txt")
        assert err == "File deletion (rm)"

    def test_rm_after_pipe(self) -> None:
        ok, _ = validate_command("ls | rm")
        assert ok is False

    def test_semicolon_anywhere(self) -> None:
        ok, err = validate_command("echo 'a;b'")
        assert ok is False
        assert "separator" in err.lower()

    def test_first_matching_rule_wins(self) -> None:
        _, err = validate_command("sudo rm x")
        assert err == "File deletion (rm)"

    def test_every_pattern_has_reason(self) -> None:
        for _, reason in FORBIDDEN_PATTERNS:
            assert reason


# =========================================================================
# is_safe
# =========================================================================


class TestIsSafe:
    def test_matches_validate_command(self) -> None:
        for cmd in ["echo hi", "rm x", "", None, "echo $(id)"]:
            assert is_safe(cmd) == validate_command(cmd)[0]

    def test_safe(self) -> None:
        assert is_safe("echo Hello World!") is True

    def test_unsafe(self) -> None:
        assert is_safe("sudo reboot") is False


# =========================================================================
# sanitize_output
# =========================================================================


class TestSanitizeOutput:
    """Output truncation."""

    def test_empty(self) -> None:
        assert sanitize_output("") == ""

    def test_short_unchanged(self) -> None:
        assert sanitize_output("hello\n") == "hello\n"

    def test_exact_limit_unchanged(self) -> None:
        text = "x" * 100
        assert sanitize_output(text, max_length=100) == text

    def test_truncated(self) -> None:
        result = sanitize_output("x" * 150, max_length=100)
        assert result.startswith("x" * 100)
        assert "[truncated, 50 chars omitted]" in result
