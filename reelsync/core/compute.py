from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import boto3

from reelsync.errors import InstanceNotFoundError

from .config import Settings


@dataclass(frozen=True, slots=True)
class TagSelector:
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class InstanceDescription:
    instance_id: str
    state: str
    public_address: str | None


class InstanceController(ABC):
    """Blocking controller for the remote serving instance."""

    @abstractmethod
    def describe(self, selector: TagSelector) -> InstanceDescription: ...

    @abstractmethod
    def set_boot_script(self, instance_id: str, script: str) -> None: ...

    @abstractmethod
    def stop(self, instance_id: str) -> None: ...

    @abstractmethod
    def start(self, instance_id: str) -> None: ...


class EC2InstanceController(InstanceController):
    def __init__(self, *, region: str | None = None, client: Any = None):
        self.client = client or boto3.client("ec2", region_name=region)

    def describe(self, selector: TagSelector) -> InstanceDescription:
        response = self.client.describe_instances(
            Filters=[
                {"Name": f"tag:{selector.key}", "Values": [selector.value]},
                {"Name": "instance-state-name", "Values": ["pending", "running", "stopping", "stopped"]},
            ]
        )
        instances = [
            instance
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if not instances:
            raise InstanceNotFoundError(f"no instance tagged {selector.key}={selector.value}")
        instance = instances[0]
        return InstanceDescription(
            instance_id=instance["InstanceId"],
            state=(instance.get("State") or {}).get("Name", "unknown"),
            public_address=instance.get("PublicIpAddress") or instance.get("PublicDnsName") or None,
        )

    def set_boot_script(self, instance_id: str, script: str) -> None:
        # boto3 base64-encodes blob attributes on the wire.
        self.client.modify_instance_attribute(
            InstanceId=instance_id,
            UserData={"Value": script.encode("utf-8")},
        )

    def stop(self, instance_id: str) -> None:
        self.client.stop_instances(InstanceIds=[instance_id])

    def start(self, instance_id: str) -> None:
        self.client.start_instances(InstanceIds=[instance_id])


def get_instance_controller(settings: Settings) -> InstanceController:
    if settings.compute_backend == "ec2":
        return EC2InstanceController(region=settings.aws_region)
    raise ValueError(f"Unsupported compute backend: {settings.compute_backend}")


def distribution_selector(settings: Settings) -> TagSelector:
    return TagSelector(key=settings.distribution_tag_key, value=settings.distribution_tag_value)


__all__ = [
    "TagSelector",
    "InstanceDescription",
    "InstanceController",
    "EC2InstanceController",
    "get_instance_controller",
    "distribution_selector",
]
