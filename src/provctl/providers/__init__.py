"""Provider interfaces for provctl."""
from __future__ import annotations

from .acl import AclEntry, AclError, AclProvider
from .ec2 import Ec2Error, create_ec2_client

__all__ = [
    "AclEntry",
    "AclError",
    "AclProvider",
    "Ec2Error",
    "create_ec2_client",
]
