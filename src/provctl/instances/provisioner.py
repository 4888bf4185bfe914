"""Create one EC2 instance, one EBS volume, and attach them.

The sequence is forward-only. A failure at any step is reported and
re-raised; resources created by earlier steps are left in place.
"""
from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError, WaiterError

from ..providers.ec2 import Ec2Error
from .models import InstanceRequest, build_tag_specifications, tags_to_dict

RUNNING_TIMEOUT_SECONDS = 300.0
RUNNING_WAIT_DELAY_SECONDS = 5
VOLUME_POLL_INTERVAL_SECONDS = 2.0


class ProvisionTimeoutError(Ec2Error):
    """Raised when the instance does not reach ``running`` in time."""


StepReporter = Callable[[str, str], None]


@dataclass(slots=True)
class ProvisionResult:
    """Identifiers and addresses of the provisioned resources."""

    instance_id: str
    instance_type: str
    availability_zone: str | None = None
    private_ip: str | None = None
    public_ip: str | None = None
    volume_id: str | None = None
    volume_size: int | None = None
    volume_type: str | None = None
    device_name: str | None = None
    instance_tags: dict[str, str] = field(default_factory=dict)
    volume_tags: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "instance_id": self.instance_id,
            "instance_type": self.instance_type,
            "availability_zone": self.availability_zone,
            "private_ip": self.private_ip,
            "public_ip": self.public_ip,
            "volume_id": self.volume_id,
            "volume_size": self.volume_size,
            "volume_type": self.volume_type,
            "device_name": self.device_name,
            "instance_tags": dict(self.instance_tags),
            "volume_tags": dict(self.volume_tags),
            "dry_run": self.dry_run,
        }


@dataclass(slots=True)
class InstanceProvisioner:
    """Drive the EC2 calls that provision an instance and its data volume."""

    client: Any
    running_timeout: float = RUNNING_TIMEOUT_SECONDS
    poll_interval: float = VOLUME_POLL_INTERVAL_SECONDS
    sleep: Callable[[float], None] = time.sleep
    reporter: StepReporter | None = None

    def provision(self, request: InstanceRequest, *, dry_run: bool = False) -> ProvisionResult:
        """Run the full sequence for *request* and return the summary."""
        request.validate()
        try:
            return self._provision(request, dry_run=dry_run)
        except Exception as exc:
            self._report("failed", str(exc))
            raise

    # ------------------------------------------------------------------
    def _provision(self, request: InstanceRequest, *, dry_run: bool) -> ProvisionResult:
        instance_spec, volume_spec = build_tag_specifications(request.tags)
        instance_tags = tags_to_dict(instance_spec["Tags"])  # type: ignore[arg-type]
        volume_tags = tags_to_dict(volume_spec["Tags"])  # type: ignore[arg-type]

        if dry_run:
            self._dry_run_instance(request, instance_spec)
            return ProvisionResult(
                instance_id="(dry-run)",
                instance_type=request.instance_type,
                volume_size=request.volume_size,
                volume_type=request.volume_type,
                device_name=request.device_name,
                instance_tags=instance_tags,
                volume_tags=volume_tags,
                dry_run=True,
            )

        instance_id = self._run_instance(request, instance_spec)
        result = ProvisionResult(
            instance_id=instance_id,
            instance_type=request.instance_type,
            instance_tags=instance_tags,
            volume_tags=volume_tags,
        )

        self._wait_for_running(instance_id)
        instance = self._describe_instance(instance_id)
        result.availability_zone = instance.get("Placement", {}).get("AvailabilityZone")
        result.private_ip = instance.get("PrivateIpAddress")
        result.public_ip = instance.get("PublicIpAddress")
        if not result.availability_zone:
            raise Ec2Error(f"Instance {instance_id} reported no availability zone.")
        self._report(
            "instance.running",
            f"Instance {instance_id} running in {result.availability_zone}.",
        )

        volume_id = self._create_volume(request, result.availability_zone, volume_spec)
        result.volume_id = volume_id
        result.volume_size = request.volume_size
        result.volume_type = request.volume_type

        self._wait_for_available(volume_id)

        self.client.attach_volume(
            Device=request.device_name,
            InstanceId=instance_id,
            VolumeId=volume_id,
        )
        result.device_name = request.device_name
        self._report(
            "volume.attach",
            f"Attached {volume_id} to {instance_id} at {request.device_name}.",
        )
        return result

    def _dry_run_instance(self, request: InstanceRequest, instance_spec: dict[str, object]) -> None:
        try:
            self.client.run_instances(**self._run_params(request, instance_spec), DryRun=True)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "DryRunOperation":
                self._report("instance.dry-run", "Request would have succeeded.")
                return
            raise
        self._report("instance.dry-run", "Request accepted without DryRunOperation.")

    def _run_params(
        self,
        request: InstanceRequest,
        instance_spec: dict[str, object],
    ) -> dict[str, object]:
        return {
            "ImageId": request.image_id,
            "InstanceType": request.instance_type,
            "KeyName": request.key_name,
            "SubnetId": request.subnet_id,
            "SecurityGroupIds": list(request.security_group_ids),
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [instance_spec],
        }

    def _run_instance(self, request: InstanceRequest, instance_spec: dict[str, object]) -> str:
        response = self.client.run_instances(**self._run_params(request, instance_spec))
        instances = response.get("Instances") or []
        if len(instances) != 1:
            raise Ec2Error(f"Expected one instance, EC2 returned {len(instances)}.")
        instance_id = str(instances[0]["InstanceId"])
        self._report("instance.create", f"Created instance {instance_id}.")
        return instance_id

    def _wait_for_running(self, instance_id: str) -> None:
        delay = max(1, min(RUNNING_WAIT_DELAY_SECONDS, int(self.running_timeout)))
        attempts = max(1, math.ceil(self.running_timeout / delay))
        self._report(
            "instance.wait",
            f"Waiting up to {int(self.running_timeout)}s for {instance_id} to run.",
        )
        waiter = self.client.get_waiter("instance_running")
        try:
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={"Delay": delay, "MaxAttempts": attempts},
            )
        except WaiterError as exc:
            raise ProvisionTimeoutError(
                f"Instance {instance_id} did not reach running state within "
                f"{int(self.running_timeout)}s: {exc}"
            ) from exc

    def _describe_instance(self, instance_id: str) -> dict[str, Any]:
        response = self.client.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("InstanceId") == instance_id:
                    return dict(instance)
        raise Ec2Error(f"Instance {instance_id} not found in describe_instances output.")

    def _create_volume(
        self,
        request: InstanceRequest,
        availability_zone: str,
        volume_spec: dict[str, object],
    ) -> str:
        response = self.client.create_volume(
            AvailabilityZone=availability_zone,
            Size=request.volume_size,
            VolumeType=request.volume_type,
            TagSpecifications=[volume_spec],
        )
        volume_id = str(response["VolumeId"])
        self._report(
            "volume.create",
            f"Created {request.volume_size} GiB {request.volume_type} volume {volume_id}.",
        )
        return volume_id

    def _wait_for_available(self, volume_id: str) -> None:
        self._report("volume.wait", f"Waiting for {volume_id} to become available.")
        while True:
            response = self.client.describe_volumes(VolumeIds=[volume_id])
            volumes = response.get("Volumes") or []
            state = volumes[0].get("State") if volumes else None
            if state == "available":
                return
            if state == "error":
                raise Ec2Error(f"Volume {volume_id} entered the error state.")
            self.sleep(self.poll_interval)

    def _report(self, step: str, message: str) -> None:
        if self.reporter is not None:
            self.reporter(step, message)


__all__ = [
    "InstanceProvisioner",
    "ProvisionResult",
    "ProvisionTimeoutError",
    "RUNNING_TIMEOUT_SECONDS",
    "VOLUME_POLL_INTERVAL_SECONDS",
]
