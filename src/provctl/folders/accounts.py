"""Account list parsing."""
from __future__ import annotations

from pathlib import Path


class AccountListError(RuntimeError):
    """Raised when the account list cannot be read."""


def parse_account_names(text: str) -> list[str]:
    """Return the stripped, non-blank lines of *text* in order."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def read_account_names(path: Path) -> list[str]:
    """Read account names from *path*, one per non-blank line."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise AccountListError(f"Account list not found: {path}") from exc
    except UnicodeDecodeError as exc:
        raise AccountListError(f"Account list {path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise AccountListError(f"Unable to read account list {path}: {exc}") from exc
    return parse_account_names(text)


__all__ = ["AccountListError", "parse_account_names", "read_account_names"]
