"""Type definitions for ohmyreplicated."""

from dataclasses import dataclass, field
from typing import Literal, TypedDict

from .expiry import Expiration

ProviderName = Literal["aws", "gcp"]

MANAGED_BY = "oh-my-replicated"


class InstanceRef(TypedDict):
    """Instance resolved from an owner + name query."""

    id: str
    name: str
    zone: str
    status: str


class InstanceListItem(TypedDict, total=False):
    """Instance information in list results."""

    name: str
    id: str
    ip: str
    private_ip: str
    status: str
    zone: str
    type: str
    expires: str


class InstanceAddress(TypedDict):
    public_ip: str | None
    private_ip: str | None
    image: str | None


class ImageListItem(TypedDict):
    id: str
    name: str
    created: str


@dataclass(frozen=True)
class ResourceLabels:
    """Owner/expiration/management triple stamped on every created resource."""

    owner: str
    expiration: Expiration

    def as_dict(self) -> dict[str, str]:
        return {
            "owner": self.owner,
            "expires-on": self.expiration.label,
            "managed-by": MANAGED_BY,
        }


@dataclass(frozen=True)
class InstanceSelector:
    """Owner-scoped instance lookup by qualified name.

    With ``exact`` unset the name is a prefix, so ``foo`` also matches ``foo2``.
    An empty ``states`` tuple means any live state.
    """

    owner: str
    name: str
    states: tuple[str, ...] = ()
    exact: bool = False

    def matches(self, name: str) -> bool:
        if self.exact:
            return name == self.name
        return name.startswith(self.name)


@dataclass(frozen=True)
class CreateInstancesRequest:
    image: str
    machine_type: str
    names: tuple[str, ...]
    labels: ResourceLabels


@dataclass(frozen=True)
class CreateVolumeRequest:
    names: tuple[str, ...]
    labels: ResourceLabels
    size_gb: int = 100


@dataclass(frozen=True)
class AttachVolumeRequest:
    owner: str
    instance_name: str
    volume_name: str
    device: str


@dataclass(frozen=True)
class TagInstanceRequest:
    owner: str
    instance_name: str
    tags: dict[str, str] = field(default_factory=dict)
    network_tags: tuple[str, ...] = ()
