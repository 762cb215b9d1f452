#!/usr/bin/env python3
"""Provision and tear down labelled developer instances on AWS and Google Cloud.

Prerequisites: AWS credentials for boto3 (profile or environment), gcloud CLI
authenticated, AWSUSER / GUSER set to your username.

Usage: ohmyreplicated <provider> <verb> [options]

Examples:
    ohmyreplicated aws create -d 3d ami-0abcdef1234567890 t3.medium kots1 kots2
    ohmyreplicated aws ssh-forward kots1
    ohmyreplicated gcp create -d never ubuntu-2204 n2-standard-4 airgap1
    ohmyreplicated gcp delete airgap
"""

import os
import sys
from typing import Annotated

import cyclopts
from cyclopts import Parameter

from . import instances
from .config import Config
from .providers import AWSProvider, GCPProvider, get_provider
from .utils import setup_logging

app = cyclopts.App(
    name="ohmyreplicated", help="Manage developer instances on AWS and GCP", sort_key=None
)

aws_app = cyclopts.App(name="aws", help="Manage EC2 instances (AWSUSER, AWSPREFIX)", sort_key=1)
gcp_app = cyclopts.App(name="gcp", help="Manage Compute Engine instances (GUSER, GPREFIX)", sort_key=2)

app.command(aws_app)
app.command(gcp_app)

Duration = Annotated[str | None, Parameter(name=["--duration", "-d"])]


def _aws(region: str | None = None, profile: str | None = None) -> tuple[Config, AWSProvider]:
    return Config.from_env("aws"), get_provider("aws", region=region, aws_profile=profile)


def _gcp() -> tuple[Config, GCPProvider]:
    return Config.from_env("gcp"), get_provider("gcp")


def _exit_with(returncode: int) -> None:
    if returncode:
        sys.exit(returncode)


@aws_app.command(name="env")
def aws_env(*, region: str | None = None, profile: str | None = None):
    """Show the active AWS profile, region and identity variables."""
    instances.show_env(*_aws(region, profile))


@aws_app.command(name="list")
def aws_list(*, region: str | None = None, profile: str | None = None):
    """List your instances (tag owner=AWSUSER).

    :param region: AWS region (default: AWS_REGION or profile region)
    :param profile: AWS profile (default: AWS_PROFILE)
    """
    instances.list_instances(*_aws(region, profile))


@aws_app.command(name="create")
def aws_create(
    ami_id: str,
    instance_type: str,
    *names: str,
    duration: Duration = None,
    region: str | None = None,
    profile: str | None = None,
):
    """Create instances tagged with owner, expiration and managed-by.

    :param ami_id: AMI ID (ami-xxxxxxxx)
    :param instance_type: EC2 instance type, e.g. t3.medium
    :param names: Instance names (AWSPREFIX is prepended)
    :param duration: Time until expiry (1d, 2w, 1m) or 'never' (default: 1d)
    :param region: AWS region
    :param profile: AWS profile
    """
    config, provider = _aws(region, profile)
    instances.create_instances(config, provider, ami_id, instance_type, names, duration)


@aws_app.command(name="start")
def aws_start(name: str, *, exact: bool = False, region: str | None = None, profile: str | None = None):
    """Start stopped instances whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _aws(region, profile)
    instances.start_instances(config, provider, name, exact=exact)


@aws_app.command(name="stop")
def aws_stop(name: str, *, exact: bool = False, region: str | None = None, profile: str | None = None):
    """Stop running instances whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _aws(region, profile)
    instances.stop_instances(config, provider, name, exact=exact)


@aws_app.command(name="delete")
def aws_delete(name: str, *, exact: bool = False, region: str | None = None, profile: str | None = None):
    """Terminate instances whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _aws(region, profile)
    instances.delete_instances(config, provider, name, exact=exact)


@aws_app.command(name="ssh")
def aws_ssh(name: str, *, region: str | None = None, profile: str | None = None):
    """SSH to a running instance, trying common usernames.

    :param name: Instance name
    """
    config, provider = _aws(region, profile)
    _exit_with(instances.ssh_instance(config, provider, name))


@aws_app.command(name="ssh-forward")
def aws_ssh_forward(name: str, *, region: str | None = None, profile: str | None = None):
    """SSH to a running instance forwarding ports 8800 and 8888.

    :param name: Instance name
    """
    config, provider = _aws(region, profile)
    _exit_with(instances.ssh_instance(config, provider, name, forward=True))


@aws_app.command(name="volume")
def aws_volume(
    name: str,
    size_gb: str,
    *,
    duration: Duration = None,
    region: str | None = None,
    profile: str | None = None,
):
    """Create a gp3 EBS volume named vol-NAME.

    :param name: Volume name
    :param size_gb: Size in GB (1-16384)
    :param duration: Time until expiry (1d, 2w, 1m) or 'never' (default: 1d)
    """
    config, provider = _aws(region, profile)
    instances.create_volumes(config, provider, [name], size_gb, duration)


@aws_app.command(name="attach")
def aws_attach(
    instance: str,
    volume: str,
    *,
    device: str = AWSProvider.DEFAULT_DEVICE,
    region: str | None = None,
    profile: str | None = None,
):
    """Attach volume vol-VOLUME to an instance.

    :param instance: Instance name
    :param volume: Volume name
    :param device: Device name on the instance
    """
    config, provider = _aws(region, profile)
    instances.attach_volume(config, provider, instance, volume, device)


@aws_app.command(name="tag")
def aws_tag(instance: str, *tags: str, region: str | None = None, profile: str | None = None):
    """Add KEY=VALUE tags to an instance.

    :param instance: Instance name
    :param tags: Tags in KEY=VALUE format
    """
    config, provider = _aws(region, profile)
    instances.tag_instance(config, provider, instance, tags)


@aws_app.command(name="amis")
def aws_amis(term: str = "ubuntu", *, region: str | None = None, profile: str | None = None):
    """Show the ten newest Ubuntu/Amazon AMIs whose name contains TERM.

    :param term: Search term
    """
    config, provider = _aws(region, profile)
    instances.search_images(config, provider, term)


@gcp_app.command(name="env")
def gcp_env():
    """Show the active gcloud configuration and identity variables."""
    instances.show_env(*_gcp())


@gcp_app.command(name="list")
def gcp_list():
    """List your instances (label owner=GUSER)."""
    instances.list_instances(*_gcp())


@gcp_app.command(name="create")
def gcp_create(image: str, machine_type: str, *names: str, duration: Duration = None):
    """Create instances labelled with owner, expiration and managed-by.

    :param image: Image name pattern, e.g. ubuntu-2204 (arm images are skipped)
    :param machine_type: Machine type, e.g. n2-standard-4
    :param names: Instance names (GPREFIX is prepended)
    :param duration: Time until expiry (1d, 2w, 1m) or 'never' (default: 1d)
    """
    config, provider = _gcp()
    instances.create_instances(config, provider, image, machine_type, names, duration)


@gcp_app.command(name="start")
def gcp_start(name: str, *, exact: bool = False):
    """Start terminated instances whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _gcp()
    instances.start_instances(config, provider, name, exact=exact)


@gcp_app.command(name="stop")
def gcp_stop(name: str, *, exact: bool = False):
    """Stop running instances whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _gcp()
    instances.stop_instances(config, provider, name, exact=exact)


@gcp_app.command(name="delete")
def gcp_delete(name: str, *, exact: bool = False):
    """Delete instances (and their disks) whose name starts with NAME.

    :param name: Instance name prefix
    :param exact: Match the full name instead of a prefix
    """
    config, provider = _gcp()
    instances.delete_instances(config, provider, name, exact=exact)


@gcp_app.command(name="ssh")
def gcp_ssh(name: str):
    """SSH through IAP, retrying while the instance boots.

    :param name: Instance name
    """
    config, provider = _gcp()
    _exit_with(instances.ssh_instance(config, provider, name))


@gcp_app.command(name="ssh-forward")
def gcp_ssh_forward(name: str):
    """SSH to the external IP forwarding ports 8800 and 8888.

    :param name: Instance name
    """
    config, provider = _gcp()
    _exit_with(instances.ssh_instance(config, provider, name, forward=True))


@gcp_app.command(name="disk")
def gcp_disk(*names: str, size_gb: int = 100, duration: Duration = None):
    """Create pd-balanced disks named disk-NAME.

    :param names: Disk names
    :param size_gb: Size in GB
    :param duration: Time until expiry (1d, 2w, 1m) or 'never' (default: 1d)
    """
    config, provider = _gcp()
    instances.create_volumes(config, provider, names, size_gb, duration)


@gcp_app.command(name="attach")
def gcp_attach(instance: str, disk: str):
    """Attach disk-DISK to an instance.

    :param instance: Instance name
    :param disk: Disk name
    """
    config, provider = _gcp()
    instances.attach_volume(config, provider, instance, disk)


@gcp_app.command(name="tag")
def gcp_tag(instance: str, tags: str):
    """Add network tags to an instance.

    :param instance: Instance name
    :param tags: Comma separated network tags
    """
    config, provider = _gcp()
    instances.tag_instance(config, provider, instance, [tags])


@gcp_app.command(name="online")
def gcp_online(*names: str):
    """Give instances an external IP.

    :param names: Instance names
    """
    config, provider = _gcp()
    instances.set_external_access(config, provider, names, enabled=True)


@gcp_app.command(name="airgap")
def gcp_airgap(*names: str):
    """Remove the external IP from instances.

    :param names: Instance names
    """
    config, provider = _gcp()
    instances.set_external_access(config, provider, names, enabled=False)


def main():
    setup_logging(os.getenv("OHMYREPLICATED_LOG_LEVEL", "INFO"))
    app()


if __name__ == "__main__":
    main()
