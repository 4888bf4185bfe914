"""Single instance plus data volume provisioning on EC2."""
from __future__ import annotations

from .models import (
    ALLOWED_ENVIRONMENTS,
    InstanceRequest,
    RequestValidationError,
    ResourceTags,
    build_tag_specifications,
)
from .provisioner import InstanceProvisioner, ProvisionResult, ProvisionTimeoutError

__all__ = [
    "ALLOWED_ENVIRONMENTS",
    "InstanceProvisioner",
    "InstanceRequest",
    "ProvisionResult",
    "ProvisionTimeoutError",
    "RequestValidationError",
    "ResourceTags",
    "build_tag_specifications",
]
