"""Per-account directory creation and full-control grants."""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..providers.acl import AclError, AclProvider

FolderEvent = Literal["exists", "created", "granted", "error"]


@dataclass(slots=True)
class FolderOutcome:
    """Result of processing a single account."""

    account: str
    path: Path
    existed: bool = False
    created: bool = False
    granted: bool = False
    dry_run: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the account was processed without error."""
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "account": self.account,
            "path": str(self.path),
            "existed": self.existed,
            "created": self.created,
            "granted": self.granted,
            "dry_run": self.dry_run,
            "error": self.error,
        }


@dataclass(slots=True)
class FolderRunReport:
    """Aggregated outcomes for one provisioning run."""

    base_path: Path
    outcomes: list[FolderOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[FolderOutcome]:
        """Return outcomes that recorded an error."""
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def created_count(self) -> int:
        """Return how many directories were created."""
        return sum(1 for outcome in self.outcomes if outcome.created)

    @property
    def granted_count(self) -> int:
        """Return how many grants were written."""
        return sum(1 for outcome in self.outcomes if outcome.granted)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "base_path": str(self.base_path),
            "created": self.created_count,
            "granted": self.granted_count,
            "failed": len(self.failures),
            "accounts": [outcome.to_dict() for outcome in self.outcomes],
        }


Reporter = Callable[[FolderEvent, FolderOutcome], None]


def provision_folders(
    base_path: Path,
    accounts: Iterable[str],
    *,
    acl: AclProvider,
    principal_type: str = "user",
    dry_run: bool = False,
    reporter: Reporter | None = None,
) -> FolderRunReport:
    """Ensure a directory per account under *base_path* and grant full control.

    A failure on one account is recorded on its outcome and the loop moves on
    to the next account.
    """
    report = FolderRunReport(base_path=base_path)
    for account in accounts:
        outcome = provision_folder(
            base_path,
            account,
            acl=acl,
            principal_type=principal_type,
            dry_run=dry_run,
            reporter=reporter,
        )
        report.outcomes.append(outcome)
    return report


def provision_folder(
    base_path: Path,
    account: str,
    *,
    acl: AclProvider,
    principal_type: str = "user",
    dry_run: bool = False,
    reporter: Reporter | None = None,
) -> FolderOutcome:
    """Process a single account, capturing any failure on the outcome."""
    emit = reporter or _ignore
    outcome = FolderOutcome(account=account, path=base_path / account, dry_run=dry_run)
    try:
        if outcome.path.exists():
            outcome.existed = True
            emit("exists", outcome)
        else:
            if not dry_run:
                outcome.path.mkdir(parents=True, exist_ok=True)
            outcome.created = True
            emit("created", outcome)

        if not dry_run:
            acl.grant_full_control(outcome.path, account, principal_type=principal_type)
        outcome.granted = True
        emit("granted", outcome)
    except (OSError, ValueError, AclError) as exc:
        outcome.error = str(exc)
        emit("error", outcome)
    return outcome


def _ignore(event: FolderEvent, outcome: FolderOutcome) -> None:
    return None


__all__ = [
    "FolderEvent",
    "FolderOutcome",
    "FolderRunReport",
    "provision_folder",
    "provision_folders",
]
