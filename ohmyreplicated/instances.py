"""Instance operations: validate input, resolve resources, issue one provider call."""

from rich import print

from . import ssh
from .config import Config
from .expiry import Expiration, resolve_expiration
from .providers import AWSProvider, GCPProvider, Provider
from .types import (
    AttachVolumeRequest,
    CreateInstancesRequest,
    CreateVolumeRequest,
    ImageListItem,
    InstanceListItem,
    InstanceRef,
    InstanceSelector,
    ResourceLabels,
    TagInstanceRequest,
)
from .utils import error, log
from .validation import (
    parse_aws_tags,
    parse_network_tags,
    require_instance_name,
    require_volume_size,
)


def begin(config: Config, provider: Provider) -> str:
    """Require the owner identity, then print the provider context.

    :return: Owner identity
    """
    owner = config.require_user()
    provider.describe_context()
    return owner


def expiration_for(duration: str | None) -> Expiration:
    try:
        return resolve_expiration(duration)
    except ValueError as e:
        error(str(e))


def qualified_name(config: Config, name: str, kind: str | None = None) -> str:
    """Validate ``name`` and the provider-facing name built from it."""
    require_instance_name(name)
    return require_instance_name(config.qualify(name, kind))


def show_env(config: Config, provider: Provider) -> None:
    provider.describe_context()
    log(f"{config.user_var}: {config.user or '(not set)'}")
    if config.prefix:
        log(f"Prefix: {config.prefix}")


def print_instances(instances: list[InstanceListItem]) -> None:
    columns = [
        ("NAME", "name"),
        ("ID", "id"),
        ("STATUS", "status"),
        ("TYPE", "type"),
        ("IP ADDRESS", "ip"),
        ("PRIVATE IP", "private_ip"),
        ("ZONE", "zone"),
        ("EXPIRES", "expires"),
    ]
    widths = [
        max(len(header), *(len(str(i.get(key, ""))) for i in instances))
        for header, key in columns
    ]
    print("  " + "  ".join(h.ljust(w) for (h, _), w in zip(columns, widths)))
    print("  " + "  ".join("-" * w for w in widths))
    for i in instances:
        print("  " + "  ".join(str(i.get(k, "")).ljust(w) for (_, k), w in zip(columns, widths)))


def list_instances(config: Config, provider: Provider) -> list[InstanceListItem]:
    owner = begin(config, provider)
    instances = provider.list_instances(owner)
    if not instances:
        log(f"No instances found for owner '{owner}'")
        return instances
    print_instances(instances)
    return instances


def create_instances(
    config: Config,
    provider: Provider,
    image: str,
    machine_type: str,
    names: list[str] | tuple[str, ...],
    duration: str | None = None,
) -> CreateInstancesRequest:
    """Create one instance per name, labelled with owner and expiration."""
    owner = begin(config, provider)
    expiration = expiration_for(duration)
    if not names:
        error("Insufficient arguments: at least one instance name is required")

    request = CreateInstancesRequest(
        image=image,
        machine_type=machine_type,
        names=tuple(qualified_name(config, n) for n in names),
        labels=ResourceLabels(owner=owner, expiration=expiration),
    )
    provider.create_instances(request)
    return request


def resolve_instances(
    config: Config,
    provider: Provider,
    owner: str,
    name: str,
    states: tuple[str, ...] = (),
    exact: bool = False,
    description: str = "",
) -> list[InstanceRef]:
    """Owner-scoped name lookup; exits when nothing matches."""
    selector = InstanceSelector(
        owner=owner, name=qualified_name(config, name), states=states, exact=exact
    )
    instances = provider.find_instances(selector)
    if not instances:
        error(f"No {description}instances found matching '{selector.name}'")
    return instances


def start_instances(config: Config, provider: Provider, name: str, exact: bool = False) -> list[InstanceRef]:
    owner = begin(config, provider)
    instances = resolve_instances(
        config, provider, owner, name, provider.STOPPED_STATES, exact, "stopped "
    )
    provider.start_instances(instances)
    return instances


def stop_instances(config: Config, provider: Provider, name: str, exact: bool = False) -> list[InstanceRef]:
    owner = begin(config, provider)
    instances = resolve_instances(
        config, provider, owner, name, provider.RUNNING_STATES, exact, "running "
    )
    provider.stop_instances(instances)
    return instances


def delete_instances(config: Config, provider: Provider, name: str, exact: bool = False) -> list[InstanceRef]:
    owner = begin(config, provider)
    instances = resolve_instances(config, provider, owner, name, exact=exact)
    log(f"Deleting instances: {' '.join(i['name'] for i in instances)}")
    provider.delete_instances(instances)
    return instances


def create_volumes(
    config: Config,
    provider: Provider,
    names: list[str] | tuple[str, ...],
    size_gb: str | int = 100,
    duration: str | None = None,
) -> CreateVolumeRequest:
    owner = begin(config, provider)
    if not names:
        error("Insufficient arguments: at least one volume name is required")
    request = CreateVolumeRequest(
        names=tuple(qualified_name(config, n, provider.VOLUME_KIND) for n in names),
        labels=ResourceLabels(owner=owner, expiration=expiration_for(duration)),
        size_gb=require_volume_size(size_gb),
    )
    provider.create_volumes(request)
    return request


def attach_volume(
    config: Config,
    provider: Provider,
    instance: str,
    volume: str,
    device: str | None = None,
) -> AttachVolumeRequest:
    owner = begin(config, provider)
    instance_name = qualified_name(config, instance)
    volume_name = qualified_name(config, volume, provider.VOLUME_KIND)
    if device is None:
        if isinstance(provider, AWSProvider):
            device = AWSProvider.DEFAULT_DEVICE
        else:
            device = config.qualify(f"{instance}-{provider.VOLUME_KIND}-{volume}")
    request = AttachVolumeRequest(
        owner=owner, instance_name=instance_name, volume_name=volume_name, device=device
    )
    provider.attach_volume(request)
    return request


def tag_instance(config: Config, provider: Provider, instance: str, tags: list[str] | tuple[str, ...]) -> TagInstanceRequest:
    """Add KEY=VALUE tags (AWS) or comma separated network tags (GCP)."""
    owner = begin(config, provider)
    instance_name = qualified_name(config, instance)
    if not tags:
        error("Insufficient arguments: at least one tag is required")
    if isinstance(provider, GCPProvider):
        request = TagInstanceRequest(
            owner=owner,
            instance_name=instance_name,
            network_tags=parse_network_tags(",".join(tags)),
        )
    else:
        request = TagInstanceRequest(
            owner=owner, instance_name=instance_name, tags=parse_aws_tags(tags)
        )
    provider.tag_instance(request)
    return request


def search_images(config: Config, provider: AWSProvider, term: str = "ubuntu") -> list[ImageListItem]:
    begin(config, provider)
    log(f"Searching for AMIs containing: {term}")
    images = provider.search_images(term)
    if not images:
        log(f"No AMIs found containing '{term}'")
        return images
    width = max(len(i["id"]) for i in images)
    for image in images:
        print(f"  {image['id'].ljust(width)}  {image['created']}  {image['name']}")
    return images


def set_external_access(config: Config, provider: GCPProvider, names: list[str] | tuple[str, ...], enabled: bool) -> None:
    """Give instances an external NAT address (online) or remove it (airgap)."""
    owner = begin(config, provider)
    if not names:
        error("Insufficient arguments: at least one instance name is required")
    for name in [qualified_name(config, n) for n in names]:
        provider.set_external_access(owner, name, enabled)


def ssh_instance(config: Config, provider: Provider, name: str, forward: bool = False) -> int:
    """Open an interactive session on a running instance.

    AWS tries the configured usernames first. GCP goes through IAP, or
    straight to the external IP when forwarding ports.

    :return: Exit status of the ssh session
    """
    owner = begin(config, provider)
    instance_name = qualified_name(config, name)

    if isinstance(provider, GCPProvider) and not forward:
        return provider.iap_ssh(instance_name)

    address = provider.get_instance_address(owner, instance_name)
    if not address or not address["public_ip"]:
        error(f"No running instance found with name '{instance_name}' or no public IP")
    public_ip = address["public_ip"]

    forwards = []
    if forward:
        if not address["private_ip"]:
            error(f"Instance '{instance_name}' has no private IP")
        forwards = ssh.forward_args(address["private_ip"], config.forward_ports)
        log(
            "Connecting with port forwarding: "
            + ", ".join(f"{p}:{address['private_ip']}:{p}" for p in config.forward_ports)
        )

    user = None
    if isinstance(provider, AWSProvider):
        image_name = provider.get_image_name(address["image"]) if address["image"] else None
        user = ssh.find_ssh_user(public_ip, ssh.order_candidates(config.ssh_users, image_name))

    return ssh.open_session(public_ip, user, forwards)
