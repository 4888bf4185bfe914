"""POSIX ACL provider built on ``getfacl``/``setfacl``."""
from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

FULL_CONTROL = "rwx"

Runner = Callable[[list[str], str | None], subprocess.CompletedProcess[str]]


class AclError(RuntimeError):
    """Raised when reading or writing an ACL fails."""


@dataclass(slots=True, frozen=True)
class AclEntry:
    """Single ACL entry such as ``default:user:alice:rwx``."""

    tag: str
    qualifier: str
    perms: str
    default: bool = False

    @property
    def key(self) -> tuple[bool, str, str]:
        """Identity of the entry; an ACL holds at most one entry per key."""
        return (self.default, self.tag, self.qualifier)

    def render(self) -> str:
        """Return the ``setfacl`` text form of the entry."""
        prefix = "default:" if self.default else ""
        return f"{prefix}{self.tag}:{self.qualifier}:{self.perms}"

    @classmethod
    def parse(cls, line: str) -> AclEntry:
        """Parse one ``getfacl`` output line."""
        text = line.split("#", 1)[0].strip()
        default = False
        if text.startswith("default:"):
            default = True
            text = text[len("default:") :]
        parts = text.split(":")
        if len(parts) != 3:
            raise AclError(f"Unrecognised ACL entry: {line!r}")
        tag, qualifier, perms = parts
        return cls(tag=tag, qualifier=qualifier, perms=perms, default=default)


def full_control_entries(principal: str, principal_type: str = "user") -> list[AclEntry]:
    """Return the access and inheritable entries granting *principal* full control."""
    return [
        AclEntry(tag=principal_type, qualifier=principal, perms=FULL_CONTROL),
        AclEntry(tag=principal_type, qualifier=principal, perms=FULL_CONTROL, default=True),
    ]


def merge_entries(existing: Sequence[AclEntry], additions: Sequence[AclEntry]) -> list[AclEntry]:
    """Append *additions* to *existing*, replacing entries with the same key."""
    merged = list(existing)
    for addition in additions:
        for index, entry in enumerate(merged):
            if entry.key == addition.key:
                merged[index] = addition
                break
        else:
            merged.append(addition)
    return merged


@dataclass(slots=True)
class AclProvider:
    """Read and write directory ACLs."""

    getfacl_bin: str = "getfacl"
    setfacl_bin: str = "setfacl"
    runner: Runner | None = field(default=None)

    def read(self, path: Path) -> list[AclEntry]:
        """Return the ACL entries currently set on *path*."""
        result = self._run(
            [self.getfacl_bin, "--omit-header", "--absolute-names", str(path)],
            error_prefix=f"{self.getfacl_bin} {path}",
        )
        entries: list[AclEntry] = []
        for line in result.stdout.splitlines():
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            entries.append(AclEntry.parse(line))
        return entries

    def write(self, path: Path, entries: Sequence[AclEntry]) -> None:
        """Replace the ACL on *path* with *entries*."""
        payload = "".join(f"{entry.render()}\n" for entry in entries)
        self._run(
            [self.setfacl_bin, "--set-file=-", str(path)],
            error_prefix=f"{self.setfacl_bin} {path}",
            input_text=payload,
        )

    def grant_full_control(
        self,
        path: Path,
        principal: str,
        *,
        principal_type: str = "user",
    ) -> list[AclEntry]:
        """Read the ACL on *path*, add a full-control grant and write it back.

        Mask entries are dropped so ``setfacl`` recalculates them; a stale
        mask would otherwise cap the new grant below full control.
        """
        current = [entry for entry in self.read(path) if entry.tag != "mask"]
        updated = merge_entries(current, full_control_entries(principal, principal_type))
        self.write(path, updated)
        return updated

    # ------------------------------------------------------------------
    def _run(
        self,
        args: list[str],
        *,
        error_prefix: str,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        runner = self.runner or _default_runner
        try:
            result = runner(args, input_text)
        except FileNotFoundError as exc:
            raise AclError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise AclError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


def _default_runner(
    command: list[str],
    input_text: str | None,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603, S607
        command,
        input=input_text,
        capture_output=True,
        text=True,
        check=False,
    )


__all__ = [
    "AclEntry",
    "AclError",
    "AclProvider",
    "FULL_CONTROL",
    "full_control_entries",
    "merge_entries",
]
