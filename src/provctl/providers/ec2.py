"""Thin boto3 wiring for the EC2 control plane."""
from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

# Each control-plane call is issued exactly once.
_CLIENT_CONFIG = Config(retries={"total_max_attempts": 1, "mode": "standard"})


class Ec2Error(RuntimeError):
    """Raised when an EC2 call fails or returns an unexpected payload."""


def create_ec2_client(region: str | None = None, profile: str | None = None) -> Any:
    """Return an EC2 client for *region* using the optional named *profile*."""
    session = boto3.session.Session(profile_name=profile, region_name=region)
    return session.client("ec2", config=_CLIENT_CONFIG)


__all__ = ["Ec2Error", "create_ec2_client"]
