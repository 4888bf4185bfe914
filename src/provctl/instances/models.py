"""Request and tag models for the instance provisioner."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..config import ALLOWED_VOLUME_TYPES

ALLOWED_ENVIRONMENTS = ("dev", "test", "staging", "prod", "qa")

DEFAULT_INSTANCE_TYPE = "t3.micro"
DEFAULT_VOLUME_SIZE = 20
DEFAULT_VOLUME_TYPE = "gp3"
DEFAULT_DEVICE_NAME = "/dev/sdf"


class RequestValidationError(RuntimeError):
    """Raised when an instance request is incomplete or inconsistent."""

    def __init__(self, problems: Sequence[str]) -> None:
        """Store every problem so callers can report them together."""
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


@dataclass(frozen=True)
class ResourceTags:
    """Mandatory metadata applied to the instance and its volume."""

    system: str
    owner: str
    environment: str
    billable: str

    @property
    def instance_name(self) -> str:
        """Return the ``Name`` tag value for the instance."""
        return f"{self.system}-{self.environment}"

    @property
    def volume_name(self) -> str:
        """Return the ``Name`` tag value for the data volume."""
        return f"{self.instance_name}-data"

    def base_tags(self) -> list[dict[str, str]]:
        """Return the shared tag list in EC2 ``Key``/``Value`` form."""
        return [
            {"Key": "System", "Value": self.system},
            {"Key": "Owner", "Value": self.owner},
            {"Key": "Environment", "Value": self.environment},
            {"Key": "Billable", "Value": self.billable},
        ]

    def problems(self) -> list[str]:
        """Return validation problems for the tag values."""
        found: list[str] = []
        for label, value in (
            ("system", self.system),
            ("owner", self.owner),
            ("environment", self.environment),
            ("billable", self.billable),
        ):
            if not value or not value.strip():
                found.append(f"Tag '{label}' is required.")
        if self.environment and self.environment not in ALLOWED_ENVIRONMENTS:
            allowed = ", ".join(ALLOWED_ENVIRONMENTS)
            found.append(
                f"Environment '{self.environment}' is not allowed. Choose one of: {allowed}."
            )
        return found


def build_tag_specifications(tags: ResourceTags) -> list[dict[str, object]]:
    """Return instance and volume TagSpecification blocks for *tags*."""
    shared = tags.base_tags()
    return [
        {
            "ResourceType": "instance",
            "Tags": [{"Key": "Name", "Value": tags.instance_name}, *shared],
        },
        {
            "ResourceType": "volume",
            "Tags": [{"Key": "Name", "Value": tags.volume_name}, *shared],
        },
    ]


def tags_to_dict(tag_list: Sequence[dict[str, str]]) -> dict[str, str]:
    """Collapse an EC2 tag list into a plain mapping."""
    return {entry["Key"]: entry["Value"] for entry in tag_list}


@dataclass(frozen=True)
class InstanceRequest:
    """Parameters for one instance plus one attached data volume."""

    image_id: str
    key_name: str
    subnet_id: str
    security_group_ids: tuple[str, ...]
    tags: ResourceTags
    instance_type: str = DEFAULT_INSTANCE_TYPE
    volume_size: int = DEFAULT_VOLUME_SIZE
    volume_type: str = DEFAULT_VOLUME_TYPE
    device_name: str = DEFAULT_DEVICE_NAME

    def validate(self) -> None:
        """Raise :class:`RequestValidationError` if the request is unusable."""
        problems: list[str] = []
        for label, value in (
            ("image id", self.image_id),
            ("key name", self.key_name),
            ("subnet id", self.subnet_id),
            ("instance type", self.instance_type),
            ("volume type", self.volume_type),
        ):
            if not value or not value.strip():
                problems.append(f"The {label} is required.")
        if not [group for group in self.security_group_ids if group.strip()]:
            problems.append("At least one security group id is required.")
        if self.volume_size <= 0:
            problems.append("Volume size must be greater than zero.")
        if self.volume_type.strip() and self.volume_type not in ALLOWED_VOLUME_TYPES:
            allowed = ", ".join(sorted(ALLOWED_VOLUME_TYPES))
            problems.append(
                f"Volume type '{self.volume_type}' is not supported. Choose one of: {allowed}."
            )
        problems.extend(self.tags.problems())
        if problems:
            raise RequestValidationError(problems)


__all__ = [
    "ALLOWED_ENVIRONMENTS",
    "DEFAULT_DEVICE_NAME",
    "DEFAULT_INSTANCE_TYPE",
    "DEFAULT_VOLUME_SIZE",
    "DEFAULT_VOLUME_TYPE",
    "InstanceRequest",
    "RequestValidationError",
    "ResourceTags",
    "build_tag_specifications",
    "tags_to_dict",
]
