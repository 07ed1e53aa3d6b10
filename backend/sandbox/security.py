"""Command validation for sandboxed task execution.

This module screens task commands against a denylist of destructive
patterns before anything is provisioned. It is a best-effort guard against
a known set of dangerous commands and shell injection sequences, not a
security boundary: isolation comes from running every command in a fresh,
disposable sandbox unit.

Shell operators such as ``|``, ``>`` and ``&&`` are intentionally not on the
list; see ``FORBIDDEN_PATTERNS`` to extend it.
"""

import re

# Each entry is (compiled pattern, reason). Patterns are searched anywhere in
# the whole command text, case-insensitively.
FORBIDDEN_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\brm -rf\b", re.IGNORECASE), "Recursive forced delete (rm -rf)"),
    (re.compile(r"\brm\b", re.IGNORECASE), "File deletion (rm)"),
    (re.compile(r"\bsudo\b", re.IGNORECASE), "Privilege escalation (sudo)"),
    (re.compile(r"\bshutdown\b", re.IGNORECASE), "System shutdown"),
    (re.compile(r"\breboot\b", re.IGNORECASE), "System reboot"),
    (re.compile(r";"), "Statement separator (;)"),
    (re.compile(r"\$\("), "Command substitution ($()"),
    (re.compile(r"`"), "Backtick command substitution"),
]


def validate_command(command: str | None) -> tuple[bool, str]:
    """Validate a task command before execution.

    Args:
        command: The raw command string. ``None`` is treated as unsafe.

    Returns:
        A tuple of (is_valid, error_message).
        If valid, error_message is an empty string.
        If invalid, error_message names the first rule that matched.

    Examples:
        >>> validate_command("echo hello")
        (True, '')
        >>> validate_command("sudo reboot")
        (False, 'Privilege escalation (sudo)')
        >>> validate_command("   ")
        (False, 'Command cannot be empty')
    """
    if command is None:
        return False, "Command is missing"

    if not command.strip():
        return False, "Command cannot be empty"

    for pattern, reason in FORBIDDEN_PATTERNS:
        if pattern.search(command):
            return False, reason

    return True, ""


def is_safe(command: str | None) -> bool:
    """Return True if the command passes the denylist."""
    ok, _ = validate_command(command)
    return ok


def sanitize_output(output: str, max_length: int = 50000) -> str:
    """Truncate excessively long command output.

    Args:
        output: The raw command output string.
        max_length: Maximum allowed length before truncation.

    Returns:
        The sanitized output string.
    """
    if not output:
        return ""

    if len(output) > max_length:
        truncated_chars = len(output) - max_length
        output = (
            output[:max_length]
            + f"\n... [truncated, {truncated_chars} chars omitted]"
        )

    return output
