"""Bulk per-account directory provisioning."""
from __future__ import annotations

from .accounts import AccountListError, parse_account_names, read_account_names
from .provisioner import (
    FolderEvent,
    FolderOutcome,
    FolderRunReport,
    provision_folder,
    provision_folders,
)

__all__ = [
    "AccountListError",
    "FolderEvent",
    "FolderOutcome",
    "FolderRunReport",
    "parse_account_names",
    "provision_folder",
    "provision_folders",
    "read_account_names",
]
