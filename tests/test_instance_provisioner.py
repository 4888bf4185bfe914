"""Tests for the EC2 instance and volume provisioning sequence."""
from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import ClientError, WaiterError

from provctl.instances import (
    InstanceProvisioner,
    InstanceRequest,
    ProvisionTimeoutError,
    RequestValidationError,
    ResourceTags,
    build_tag_specifications,
)
from provctl.providers.ec2 import Ec2Error


class FakeWaiter:
    """Stand-in for a botocore waiter."""

    def __init__(self, client: FakeEc2Client) -> None:
        """Bind the waiter to its fake client."""
        self.client = client

    def wait(self, **kwargs: Any) -> None:
        self.client.calls.append(("wait:instance_running", kwargs))
        if self.client.never_runs:
            raise WaiterError(
                name="InstanceRunning",
                reason="Max attempts exceeded",
                last_response={},
            )
        self.client.instance_state = "running"


class FakeEc2Client:
    """Minimal in-memory EC2 client recording every call."""

    def __init__(
        self,
        *,
        never_runs: bool = False,
        pending_polls: int = 2,
        volume_error: bool = False,
    ) -> None:
        """Configure the fake's behaviour."""
        self.never_runs = never_runs
        self.pending_polls = pending_polls
        self.volume_error = volume_error
        self.instance_state = "pending"
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def kwargs_for(self, name: str) -> dict[str, Any]:
        for call_name, kwargs in self.calls:
            if call_name == name:
                return kwargs
        raise AssertionError(f"{name} was not called")

    def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("run_instances", kwargs))
        if kwargs.get("DryRun"):
            raise ClientError(
                {"Error": {"Code": "DryRunOperation", "Message": "would succeed"}},
                "RunInstances",
            )
        return {"Instances": [{"InstanceId": "i-0123456789abcdef0"}]}

    def get_waiter(self, name: str) -> FakeWaiter:
        assert name == "instance_running"
        return FakeWaiter(self)

    def describe_instances(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("describe_instances", kwargs))
        return {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-0123456789abcdef0",
                            "State": {"Name": self.instance_state},
                            "Placement": {"AvailabilityZone": "us-east-1b"},
                            "PrivateIpAddress": "10.0.1.15",
                            "PublicIpAddress": "3.91.10.20",
                        }
                    ]
                }
            ]
        }

    def create_volume(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("create_volume", kwargs))
        return {"VolumeId": "vol-0fedcba9876543210", "State": "creating"}

    def describe_volumes(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("describe_volumes", kwargs))
        if self.volume_error:
            state = "error"
        elif self.pending_polls > 0:
            self.pending_polls -= 1
            state = "creating"
        else:
            state = "available"
        return {"Volumes": [{"VolumeId": kwargs["VolumeIds"][0], "State": state}]}

    def attach_volume(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("attach_volume", kwargs))
        return {"State": "attaching"}


def _request(environment: str = "dev", **overrides: Any) -> InstanceRequest:
    params: dict[str, Any] = {
        "image_id": "ami-12345678",
        "key_name": "ops-key",
        "subnet_id": "subnet-abc",
        "security_group_ids": ("sg-1", "sg-2"),
        "tags": ResourceTags(
            system="billing",
            owner="ops@example.com",
            environment=environment,
            billable="yes",
        ),
    }
    params.update(overrides)
    return InstanceRequest(**params)


def _provisioner(client: FakeEc2Client, sleeps: list[float] | None = None) -> InstanceProvisioner:
    recorded = sleeps if sleeps is not None else []
    return InstanceProvisioner(client=client, sleep=recorded.append)


def test_tag_specifications_cover_instance_and_volume() -> None:
    """Both blocks share the four tags and carry their own Name."""
    instance_spec, volume_spec = build_tag_specifications(_request().tags)

    assert instance_spec["ResourceType"] == "instance"
    assert volume_spec["ResourceType"] == "volume"
    instance_tags = {tag["Key"]: tag["Value"] for tag in instance_spec["Tags"]}  # type: ignore[union-attr]
    volume_tags = {tag["Key"]: tag["Value"] for tag in volume_spec["Tags"]}  # type: ignore[union-attr]
    assert instance_tags["Name"] == "billing-dev"
    assert volume_tags["Name"] == "billing-dev-data"
    for key in ("System", "Owner", "Environment", "Billable"):
        assert instance_tags[key] == volume_tags[key]
    assert instance_tags["Environment"] == "dev"


def test_happy_path_creates_one_instance_and_one_attached_volume() -> None:
    """A valid request yields exactly one instance, one volume and one attach."""
    client = FakeEc2Client()
    sleeps: list[float] = []

    result = _provisioner(client, sleeps).provision(_request())

    names = client.names()
    assert names.count("run_instances") == 1
    assert names.count("create_volume") == 1
    assert names.count("attach_volume") == 1
    run_kwargs = client.kwargs_for("run_instances")
    assert run_kwargs["MinCount"] == 1 and run_kwargs["MaxCount"] == 1
    assert run_kwargs["ImageId"] == "ami-12345678"
    assert run_kwargs["InstanceType"] == "t3.micro"
    assert run_kwargs["SecurityGroupIds"] == ["sg-1", "sg-2"]
    assert run_kwargs["TagSpecifications"][0]["ResourceType"] == "instance"

    volume_kwargs = client.kwargs_for("create_volume")
    assert volume_kwargs["AvailabilityZone"] == "us-east-1b"
    assert volume_kwargs["Size"] == 20
    assert volume_kwargs["VolumeType"] == "gp3"
    assert volume_kwargs["TagSpecifications"][0]["ResourceType"] == "volume"

    attach_kwargs = client.kwargs_for("attach_volume")
    assert attach_kwargs == {
        "Device": "/dev/sdf",
        "InstanceId": "i-0123456789abcdef0",
        "VolumeId": "vol-0fedcba9876543210",
    }

    assert result.instance_tags["Name"] == "billing-dev"
    assert result.volume_tags["Name"] == "billing-dev-data"
    assert result.private_ip == "10.0.1.15"
    assert result.public_ip == "3.91.10.20"
    assert result.availability_zone == "us-east-1b"
    assert result.device_name == "/dev/sdf"
    assert sleeps == [2.0, 2.0]


def test_attach_happens_only_after_running_and_available() -> None:
    """Attachment follows the running wait and the last (available) volume poll."""
    client = FakeEc2Client(pending_polls=3)

    _provisioner(client).provision(_request())

    names = client.names()
    attach_index = names.index("attach_volume")
    assert names.index("wait:instance_running") < names.index("create_volume") < attach_index
    assert names[attach_index - 1] == "describe_volumes"
    assert names.count("describe_volumes") == 4


def test_running_wait_is_bounded_by_timeout() -> None:
    """The waiter is configured so delay * attempts covers the timeout."""
    client = FakeEc2Client()

    InstanceProvisioner(client=client, running_timeout=300, sleep=lambda _: None).provision(
        _request()
    )

    config = client.kwargs_for("wait:instance_running")["WaiterConfig"]
    assert config["Delay"] * config["MaxAttempts"] >= 300
    assert config["Delay"] * (config["MaxAttempts"] - 1) < 300


def test_timeout_raises_and_skips_volume_creation() -> None:
    """If the instance never runs, no volume is created and the error propagates."""
    client = FakeEc2Client(never_runs=True)
    steps: list[tuple[str, str]] = []
    provisioner = InstanceProvisioner(
        client=client,
        sleep=lambda _: None,
        reporter=lambda step, message: steps.append((step, message)),
    )

    with pytest.raises(ProvisionTimeoutError, match="did not reach running state"):
        provisioner.provision(_request())

    assert "create_volume" not in client.names()
    assert "attach_volume" not in client.names()
    assert steps[-1][0] == "failed"


@pytest.mark.parametrize("environment", ["production", "DEV", "uat"])
def test_invalid_environment_rejected_before_any_call(environment: str) -> None:
    """Environments outside the allowed set fail validation with no API traffic."""
    client = FakeEc2Client()

    with pytest.raises(RequestValidationError, match="not allowed"):
        _provisioner(client).provision(_request(environment=environment))

    assert client.calls == []


def test_missing_required_values_are_all_reported() -> None:
    """Validation lists every missing parameter at once."""
    request = _request(image_id="", key_name=" ", security_group_ids=(), volume_size=0)

    with pytest.raises(RequestValidationError) as excinfo:
        request.validate()

    problems = excinfo.value.problems
    assert "The image id is required." in problems
    assert "The key name is required." in problems
    assert "At least one security group id is required." in problems
    assert "Volume size must be greater than zero." in problems


def test_volume_error_state_raises() -> None:
    """A volume in the error state stops the poll loop."""
    client = FakeEc2Client(volume_error=True)

    with pytest.raises(Ec2Error, match="error state"):
        _provisioner(client).provision(_request())

    assert "attach_volume" not in client.names()


def test_dry_run_validates_without_creating() -> None:
    """Dry runs pass DryRun=True and treat DryRunOperation as success."""
    client = FakeEc2Client()

    result = _provisioner(client).provision(_request(), dry_run=True)

    assert client.names() == ["run_instances"]
    assert client.kwargs_for("run_instances")["DryRun"] is True
    assert result.dry_run is True
    assert result.volume_tags["Name"] == "billing-dev-data"


def test_client_errors_propagate_unchanged() -> None:
    """API errors are re-raised to the caller after being reported."""

    class FailingClient(FakeEc2Client):
        def create_volume(self, **kwargs: Any) -> dict[str, Any]:
            raise ClientError(
                {"Error": {"Code": "VolumeLimitExceeded", "Message": "limit"}},
                "CreateVolume",
            )

    client = FailingClient()
    steps: list[str] = []
    provisioner = InstanceProvisioner(
        client=client,
        sleep=lambda _: None,
        reporter=lambda step, message: steps.append(step),
    )

    with pytest.raises(ClientError):
        provisioner.provision(_request())

    assert "run_instances" in client.names()
    assert steps[-1] == "failed"


def test_unknown_volume_type_rejected_before_any_call() -> None:
    """Volume types outside the supported set fail validation."""
    client = FakeEc2Client()

    with pytest.raises(RequestValidationError, match="Volume type 'gp9' is not supported"):
        _provisioner(client).provision(_request(volume_type="gp9"))

    assert client.calls == []
