"""Cloud provider adapters for AWS (boto3) and Google Cloud (gcloud CLI)."""

import os
import shutil
import time
from collections import defaultdict
from pathlib import Path
from typing import Protocol

import boto3
import botocore.session
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv
from rich import print

from .types import (
    MANAGED_BY,
    AttachVolumeRequest,
    CreateInstancesRequest,
    CreateVolumeRequest,
    ImageListItem,
    InstanceAddress,
    InstanceListItem,
    InstanceRef,
    InstanceSelector,
    ProviderName,
    ResourceLabels,
    TagInstanceRequest,
)
from .utils import error, log, run_cmd, run_cmd_json, run_cmd_passthrough, warn
from .validation import require_ami_id, require_search_term


class Provider(Protocol):
    provider_name: ProviderName
    RUNNING_STATES: tuple[str, ...]
    STOPPED_STATES: tuple[str, ...]
    VOLUME_KIND: str

    def describe_context(self) -> None: ...

    def list_instances(self, owner: str) -> list[InstanceListItem]: ...

    def find_instances(self, selector: InstanceSelector) -> list[InstanceRef]: ...

    def get_instance_address(self, owner: str, name: str) -> InstanceAddress | None: ...

    def create_instances(self, request: CreateInstancesRequest) -> None: ...

    def start_instances(self, instances: list[InstanceRef]) -> None: ...

    def stop_instances(self, instances: list[InstanceRef]) -> None: ...

    def delete_instances(self, instances: list[InstanceRef]) -> None: ...

    def create_volumes(self, request: CreateVolumeRequest) -> None: ...

    def attach_volume(self, request: AttachVolumeRequest) -> None: ...

    def tag_instance(self, request: TagInstanceRequest) -> None: ...


class AWSProvider:
    # Ingress opened on the per-owner security group
    DEFAULT_PORTS = (22, 80, 443, 8800, 8888, 30000)
    DEFAULT_VOLUME_TYPE = "gp3"
    DEFAULT_BOOT_DISK_SIZE = 100
    DEFAULT_DEVICE = "/dev/sdf"
    DEFAULT_REGION = "us-east-1"

    # Canonical, Amazon Linux publishers and the amazon alias
    IMAGE_OWNERS = ["099720109477", "137112412989", "amazon"]

    LIVE_STATES = ("running", "stopped", "pending", "stopping", "starting")
    RUNNING_STATES = ("running",)
    STOPPED_STATES = ("stopped",)
    VOLUME_KIND = "vol"

    def __init__(self, region: str | None = None, aws_profile: str | None = None):
        self.provider_name: ProviderName = "aws"
        self.aws_config = AWSProvider.get_aws_config(profile=aws_profile)
        if region:
            self.aws_config["region_name"] = region
        self.region = self.aws_config.get("region_name") or self._get_session().region_name or self.DEFAULT_REGION
        self.aws_config["region_name"] = self.region

    @staticmethod
    def get_aws_config(profile: str | None = None) -> dict:
        """Session keyword arguments for boto3 from profile and region settings.

        An unknown profile is dropped in favour of the default credential chain.

        :param profile: Explicit AWS profile name (overrides AWS_PROFILE)
        """
        load_dotenv()

        aws_config = {}
        profile_name = profile or os.getenv("AWS_PROFILE")
        if profile_name:
            if profile_name in botocore.session.Session().available_profiles:
                aws_config["profile_name"] = profile_name
            else:
                warn(f"AWS profile '{profile_name}' not found, using default credential chain...")
                os.environ.pop("AWS_PROFILE", None)

        region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
        if region:
            aws_config["region_name"] = region
        return aws_config

    def _get_session(self):
        """Get boto3 session using aws_config."""
        return boto3.Session(**self.aws_config)

    def _get_ec2_client(self):
        return self._get_session().client("ec2")

    def _fail(self, action: str, e: Exception) -> None:
        """Exit with the provider's message, pointing at sso login for expired tokens."""
        if isinstance(e, ClientError):
            error_code = e.response["Error"]["Code"]
            if error_code in ("ExpiredToken", "ExpiredTokenException"):
                profile = self.aws_config.get("profile_name")
                login_cmd = f"aws sso login --profile {profile}" if profile else "aws sso login"
                error(f"AWS credentials expired. Run:\n  {login_cmd}")
        error(f"{action}: {e}")

    def describe_context(self) -> None:
        log(f"AWS Profile: {self.aws_config.get('profile_name', 'default')}")
        log(f"AWS Region: {self.region}")

    @staticmethod
    def _tag(instance: dict, key: str, default: str = "") -> str:
        return next(
            (t["Value"] for t in instance.get("Tags", []) if t["Key"] == key), default
        )

    def _describe_instances(self, filters: list[dict]) -> list[dict]:
        ec2 = self._get_ec2_client()
        paginator = ec2.get_paginator("describe_instances")
        instances = []
        for page in paginator.paginate(Filters=filters):
            for reservation in page["Reservations"]:
                instances.extend(reservation["Instances"])
        return instances

    def list_instances(self, owner: str) -> list[InstanceListItem]:
        try:
            instances = self._describe_instances(
                [
                    {"Name": "tag:owner", "Values": [owner]},
                    {"Name": "instance-state-name", "Values": list(self.LIVE_STATES)},
                ]
            )
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to list instances", e)

        return [
            {
                "name": self._tag(i, "Name", i["InstanceId"]),
                "id": i["InstanceId"],
                "ip": i.get("PublicIpAddress", "N/A"),
                "private_ip": i.get("PrivateIpAddress", "N/A"),
                "status": i["State"]["Name"],
                "zone": i.get("Placement", {}).get("AvailabilityZone", ""),
                "type": i.get("InstanceType", ""),
                "expires": self._tag(i, "expires-on"),
            }
            for i in instances
        ]

    def find_instances(self, selector: InstanceSelector) -> list[InstanceRef]:
        name_value = selector.name if selector.exact else f"{selector.name}*"
        try:
            instances = self._describe_instances(
                [
                    {"Name": "tag:owner", "Values": [selector.owner]},
                    {"Name": "tag:Name", "Values": [name_value]},
                    {
                        "Name": "instance-state-name",
                        "Values": list(selector.states or self.LIVE_STATES),
                    },
                ]
            )
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to query instances", e)

        return [
            {
                "id": i["InstanceId"],
                "name": self._tag(i, "Name"),
                "zone": i.get("Placement", {}).get("AvailabilityZone", ""),
                "status": i["State"]["Name"],
            }
            for i in instances
        ]

    def get_instance_address(self, owner: str, name: str) -> InstanceAddress | None:
        try:
            instances = self._describe_instances(
                [
                    {"Name": "tag:owner", "Values": [owner]},
                    {"Name": "tag:Name", "Values": [name]},
                    {"Name": "instance-state-name", "Values": list(self.RUNNING_STATES)},
                ]
            )
        except (ClientError, BotoCoreError) as e:
            self._fail(f"Failed to query instance: '{name}'", e)

        if not instances:
            return None
        instance = instances[0]
        return {
            "public_ip": instance.get("PublicIpAddress"),
            "private_ip": instance.get("PrivateIpAddress"),
            "image": instance.get("ImageId"),
        }

    def get_image_name(self, ami_id: str) -> str | None:
        """:return: The AMI's name, or None if it cannot be described"""
        try:
            images = self._get_ec2_client().describe_images(ImageIds=[ami_id])["Images"]
        except (ClientError, BotoCoreError):
            return None
        return images[0].get("Name") if images else None

    def image_exists(self, ami_id: str) -> bool:
        try:
            images = self._get_ec2_client().describe_images(ImageIds=[ami_id])["Images"]
        except ClientError as e:
            if e.response["Error"]["Code"].startswith("InvalidAMIID"):
                return False
            self._fail(f"Failed to query AMI '{ami_id}'", e)
        except BotoCoreError as e:
            self._fail(f"Failed to query AMI '{ami_id}'", e)
        return bool(images)

    def _default_network(self, ec2) -> tuple[str, str]:
        """:return: (vpc_id, subnet_id) of the default VPC and its first subnet"""
        try:
            vpcs = ec2.describe_vpcs(
                Filters=[{"Name": "is-default", "Values": ["true"]}]
            )["Vpcs"]
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to get default VPC", e)
        if not vpcs:
            error("No default VPC found")
        vpc_id = vpcs[0]["VpcId"]

        try:
            subnets = ec2.describe_subnets(
                Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
            )["Subnets"]
        except (ClientError, BotoCoreError) as e:
            self._fail(f"Failed to get subnet for VPC: '{vpc_id}'", e)
        if not subnets:
            error(f"No subnet found in VPC: '{vpc_id}'")
        return vpc_id, subnets[0]["SubnetId"]

    def _ensure_security_group(self, ec2, owner: str, vpc_id: str) -> str:
        """Find or create the owner's security group with the default ports open.

        :return: Security group ID
        """
        sg_name = f"{owner}-default-sg"
        try:
            groups = ec2.describe_security_groups(
                Filters=[
                    {"Name": "group-name", "Values": [sg_name]},
                    {"Name": "vpc-id", "Values": [vpc_id]},
                ]
            )["SecurityGroups"]
            if groups:
                return groups[0]["GroupId"]

            log(f"Creating security group '{sg_name}'")
            sg_id = ec2.create_security_group(
                GroupName=sg_name,
                Description=f"Default security group for {owner}",
                VpcId=vpc_id,
                TagSpecifications=[
                    {
                        "ResourceType": "security-group",
                        "Tags": [
                            {"Key": "Name", "Value": sg_name},
                            {"Key": "owner", "Value": owner},
                            {"Key": "managed-by", "Value": MANAGED_BY},
                        ],
                    }
                ],
            )["GroupId"]
            ec2.authorize_security_group_ingress(
                GroupId=sg_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": port,
                        "ToPort": port,
                        "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                    }
                    for port in self.DEFAULT_PORTS
                ],
            )
        except (ClientError, BotoCoreError) as e:
            self._fail(f"Failed to set up security group '{sg_name}'", e)
        return sg_id

    @staticmethod
    def _tag_list(name: str, labels: ResourceLabels) -> list[dict]:
        tags = [{"Key": "Name", "Value": name}]
        tags.extend({"Key": k, "Value": v} for k, v in labels.as_dict().items())
        return tags

    def run_instances_params(
        self, request: CreateInstancesRequest, name: str, subnet_id: str, sg_id: str
    ) -> dict:
        """Build run_instances keyword arguments for one instance."""
        return {
            "ImageId": request.image,
            "InstanceType": request.machine_type,
            "MinCount": 1,
            "MaxCount": 1,
            "NetworkInterfaces": [
                {
                    "DeviceIndex": 0,
                    "SubnetId": subnet_id,
                    "Groups": [sg_id],
                    "AssociatePublicIpAddress": True,
                }
            ],
            "TagSpecifications": [
                {"ResourceType": "instance", "Tags": self._tag_list(name, request.labels)},
                {
                    "ResourceType": "volume",
                    "Tags": self._tag_list(f"{name}-root", request.labels),
                },
            ],
            "BlockDeviceMappings": [
                {
                    "DeviceName": "/dev/sda1",
                    "Ebs": {
                        "VolumeSize": self.DEFAULT_BOOT_DISK_SIZE,
                        "VolumeType": self.DEFAULT_VOLUME_TYPE,
                        "DeleteOnTermination": True,
                    },
                }
            ],
        }

    def create_instances(self, request: CreateInstancesRequest) -> None:
        require_ami_id(request.image)
        if not self.image_exists(request.image):
            error(f"AMI '{request.image}' not found or not accessible")

        ec2 = self._get_ec2_client()
        vpc_id, subnet_id = self._default_network(ec2)
        sg_id = self._ensure_security_group(ec2, request.labels.owner, vpc_id)

        for name in request.names:
            log(f"Creating instance: '{name}' ({request.machine_type}, expires-on={request.labels.expiration.label})")
            try:
                response = ec2.run_instances(
                    **self.run_instances_params(request, name, subnet_id, sg_id)
                )
            except (ClientError, BotoCoreError) as e:
                self._fail(f"Failed to create instance '{name}'", e)
            instance = response["Instances"][0]
            print(
                f"  {instance['InstanceId']}  {instance['State']['Name']}  "
                f"{instance.get('PublicIpAddress', 'N/A')}"
            )

    def _print_transitions(self, key: str, response: dict) -> None:
        for change in response.get(key, []):
            print(
                f"  {change['InstanceId']}  {change['PreviousState']['Name']} -> "
                f"{change['CurrentState']['Name']}"
            )

    def start_instances(self, instances: list[InstanceRef]) -> None:
        ids = [i["id"] for i in instances]
        log(f"Starting instances: {' '.join(ids)}")
        try:
            response = self._get_ec2_client().start_instances(InstanceIds=ids)
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to start instances", e)
        self._print_transitions("StartingInstances", response)

    def stop_instances(self, instances: list[InstanceRef]) -> None:
        ids = [i["id"] for i in instances]
        log(f"Stopping instances: {' '.join(ids)}")
        try:
            response = self._get_ec2_client().stop_instances(InstanceIds=ids)
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to stop instances", e)
        self._print_transitions("StoppingInstances", response)

    def delete_instances(self, instances: list[InstanceRef]) -> None:
        ids = [i["id"] for i in instances]
        log(f"Terminating instances: {' '.join(ids)}")
        try:
            response = self._get_ec2_client().terminate_instances(InstanceIds=ids)
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to terminate instances", e)
        self._print_transitions("TerminatingInstances", response)

    def create_volumes(self, request: CreateVolumeRequest) -> None:
        ec2 = self._get_ec2_client()
        try:
            zones = ec2.describe_availability_zones()["AvailabilityZones"]
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to get availability zone", e)
        if not zones:
            error(f"No availability zone found in '{self.region}'")
        zone = zones[0]["ZoneName"]

        for name in request.names:
            log(f"Creating volume: '{name}' ({request.size_gb} GB in {zone})")
            try:
                volume = ec2.create_volume(
                    Size=request.size_gb,
                    VolumeType=self.DEFAULT_VOLUME_TYPE,
                    AvailabilityZone=zone,
                    TagSpecifications=[
                        {"ResourceType": "volume", "Tags": self._tag_list(name, request.labels)}
                    ],
                )
            except (ClientError, BotoCoreError) as e:
                self._fail(f"Failed to create volume '{name}'", e)
            print(f"  {volume['VolumeId']}  {volume['State']}  {volume['AvailabilityZone']}")

    def attach_volume(self, request: AttachVolumeRequest) -> None:
        instances = self.find_instances(
            InstanceSelector(
                owner=request.owner,
                name=request.instance_name,
                states=("running", "stopped"),
                exact=True,
            )
        )
        ec2 = self._get_ec2_client()
        try:
            volumes = ec2.describe_volumes(
                Filters=[
                    {"Name": "tag:owner", "Values": [request.owner]},
                    {"Name": "tag:Name", "Values": [request.volume_name]},
                ]
            )["Volumes"]
        except (ClientError, BotoCoreError) as e:
            self._fail(f"Failed to query volume: '{request.volume_name}'", e)

        if not instances:
            error(f"Instance '{request.instance_name}' not found")
        if not volumes:
            error(f"Volume '{request.volume_name}' not found")

        instance_id = instances[0]["id"]
        volume_id = volumes[0]["VolumeId"]
        log(f"Attaching volume {volume_id} to {instance_id} as {request.device}")
        try:
            response = ec2.attach_volume(
                VolumeId=volume_id, InstanceId=instance_id, Device=request.device
            )
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to attach volume", e)
        print(f"  {response['VolumeId']}  {response['State']}  {response['Device']}")

    def tag_instance(self, request: TagInstanceRequest) -> None:
        instances = self.find_instances(
            InstanceSelector(
                owner=request.owner,
                name=request.instance_name,
                states=("running", "stopped", "pending"),
                exact=True,
            )
        )
        if not instances:
            error(f"Instance '{request.instance_name}' not found")

        instance_id = instances[0]["id"]
        log(f"Tagging {instance_id}: {', '.join(f'{k}={v}' for k, v in request.tags.items())}")
        try:
            self._get_ec2_client().create_tags(
                Resources=[instance_id],
                Tags=[{"Key": k, "Value": v} for k, v in request.tags.items()],
            )
        except (ClientError, BotoCoreError) as e:
            self._fail(f"Failed to tag instance '{request.instance_name}'", e)

    def search_images(self, term: str, limit: int = 10) -> list[ImageListItem]:
        """Newest available AMIs whose name contains ``term``."""
        require_search_term(term)
        try:
            images = self._get_ec2_client().describe_images(
                Owners=self.IMAGE_OWNERS,
                Filters=[
                    {"Name": "name", "Values": [f"*{term}*"]},
                    {"Name": "state", "Values": ["available"]},
                ],
            )["Images"]
        except (ClientError, BotoCoreError) as e:
            self._fail("Failed to search AMIs", e)

        images.sort(key=lambda i: i.get("CreationDate", ""))
        return [
            {"id": i["ImageId"], "name": i.get("Name", ""), "created": i.get("CreationDate", "")}
            for i in images[-limit:]
        ]


def _basename(url: str) -> str:
    """Last path segment of a GCP resource URL (zone, machineType, ...)."""
    return url.rsplit("/", 1)[-1] if url else ""


class GCPProvider:
    SCOPES = [
        "https://www.googleapis.com/auth/devstorage.read_only",
        "https://www.googleapis.com/auth/logging.write",
        "https://www.googleapis.com/auth/monitoring.write",
        "https://www.googleapis.com/auth/servicecontrol",
        "https://www.googleapis.com/auth/service.management.readonly",
        "https://www.googleapis.com/auth/trace.append",
    ]
    SERVICE_ACCOUNT_FILTER = "email:*-compute@developer.gserviceaccount.com"
    ACCESS_CONFIG_NAME = "external-nat"
    DEFAULT_DISK_TYPE = "pd-balanced"

    RUNNING_STATES = ("RUNNING",)
    STOPPED_STATES = ("TERMINATED",)
    VOLUME_KIND = "disk"

    # Sessions shorter than this are assumed to have hit a booting instance
    SSH_MIN_SESSION = 60
    SSH_RETRY_DELAY = 2
    SSH_MAX_ATTEMPTS = 30

    def __init__(self):
        self.provider_name: ProviderName = "gcp"
        if shutil.which("gcloud") is None:
            error("gcloud not installed. Install the Google Cloud SDK first.")

    @staticmethod
    def active_config_path() -> Path:
        config_dir = os.getenv("CLOUDSDK_CONFIG")
        base = Path(config_dir) if config_dir else Path.home() / ".config" / "gcloud"
        return base / "active_config"

    def active_configuration(self) -> str:
        path = self.active_config_path()
        if path.exists():
            return path.read_text().strip() or "default"
        return "default"

    def describe_context(self) -> None:
        log(f"Configuration: {self.active_configuration()}")

    def _list_raw(self, owner: str) -> list[dict]:
        return run_cmd_json(
            "gcloud",
            "compute",
            "instances",
            "list",
            f"--filter=labels.owner={owner}",
            fail_msg="Failed to query instances",
        )

    @staticmethod
    def _addresses(instance: dict) -> tuple[str | None, str | None]:
        """:return: (nat_ip, internal_ip) of the first network interface"""
        interfaces = instance.get("networkInterfaces") or [{}]
        nic = interfaces[0]
        access_configs = nic.get("accessConfigs") or [{}]
        return access_configs[0].get("natIP"), nic.get("networkIP")

    def list_instances(self, owner: str) -> list[InstanceListItem]:
        items = []
        for i in self._list_raw(owner):
            nat_ip, internal_ip = self._addresses(i)
            items.append(
                {
                    "name": i["name"],
                    "id": str(i.get("id", "")),
                    "ip": nat_ip or "N/A",
                    "private_ip": internal_ip or "N/A",
                    "status": i.get("status", ""),
                    "zone": _basename(i.get("zone", "")),
                    "type": _basename(i.get("machineType", "")),
                    "expires": (i.get("labels") or {}).get("expires-on", ""),
                }
            )
        return items

    def find_instances(self, selector: InstanceSelector) -> list[InstanceRef]:
        return [
            {
                "id": str(i.get("id", "")),
                "name": i["name"],
                "zone": _basename(i.get("zone", "")),
                "status": i.get("status", ""),
            }
            for i in self._list_raw(selector.owner)
            if selector.matches(i["name"])
            and (not selector.states or i.get("status") in selector.states)
        ]

    def get_instance_address(self, owner: str, name: str) -> InstanceAddress | None:
        instance = next((i for i in self._list_raw(owner) if i["name"] == name), None)
        if instance is None:
            return None
        nat_ip, internal_ip = self._addresses(instance)
        return {"public_ip": nat_ip, "private_ip": internal_ip, "image": None}

    def resolve_image(self, pattern: str) -> tuple[str, str] | None:
        """Find the first non-arm image whose name matches ``pattern``.

        :return: (image_name, image_project), or None when nothing matches
        """
        require_search_term(pattern)
        images = run_cmd_json(
            "gcloud",
            "compute",
            "images",
            "list",
            f"--filter=name~{pattern} AND -name~arm",
            "--limit=1",
            fail_msg="Failed to query images",
        )
        if not images:
            return None
        image = images[0]
        self_link = image.get("selfLink", "")
        project = self_link.split("/projects/", 1)[1].split("/", 1)[0] if "/projects/" in self_link else ""
        return image["name"], project

    def default_service_account(self) -> str:
        email = run_cmd(
            "gcloud",
            "iam",
            "service-accounts",
            "list",
            f"--filter={self.SERVICE_ACCOUNT_FILTER}",
            "--format=value(email)",
            "--limit=1",
            check=False,
        )
        return email or "default"

    def machine_type_exists(self, machine_type: str) -> bool:
        require_search_term(machine_type)
        found = run_cmd(
            "gcloud",
            "compute",
            "machine-types",
            "list",
            f"--filter=name={machine_type}",
            "--format=value(name)",
            "--limit=1",
            fail_msg="Failed to query machine types",
        )
        return bool(found)

    @staticmethod
    def format_labels(labels: ResourceLabels) -> str:
        return ",".join(f"{k}={v}" for k, v in labels.as_dict().items())

    def create_instances_args(
        self,
        request: CreateInstancesRequest,
        image_name: str,
        image_project: str,
        service_account: str,
    ) -> list[str]:
        """Build the single ``gcloud compute instances create`` invocation."""
        return [
            "gcloud",
            "compute",
            "instances",
            "create",
            *request.names,
            "--labels",
            self.format_labels(request.labels),
            f"--machine-type={request.machine_type}",
            "--subnet=default",
            "--network-tier=PREMIUM",
            "--maintenance-policy=MIGRATE",
            "--can-ip-forward",
            f"--service-account={service_account}",
            f"--scopes={','.join(self.SCOPES)}",
            f"--image={image_name}",
            f"--image-project={image_project}",
            "--boot-disk-size=200GB",
            "--boot-disk-type=pd-ssd",
            "--restart-on-failure",
            "--create-disk",
            "size=100GB,type=pd-ssd,auto-delete=yes",
            "--no-shielded-secure-boot",
            "--shielded-vtpm",
            "--shielded-integrity-monitoring",
            "--reservation-affinity=any",
        ]

    def _run_or_fail(self, args: list[str], fail_msg: str) -> None:
        if run_cmd_passthrough(*args) != 0:
            error(fail_msg)

    def create_instances(self, request: CreateInstancesRequest) -> None:
        image = self.resolve_image(request.image)
        if image is None:
            error(f"Unknown image pattern: '{request.image}'")
        image_name, image_project = image

        service_account = self.default_service_account()

        if not self.machine_type_exists(request.machine_type):
            error(f"Unknown machine type: '{request.machine_type}'")

        args = self.create_instances_args(request, image_name, image_project, service_account)
        self._run_or_fail(args, "Failed to create instances")

    def _by_zone(self, instances: list[InstanceRef]) -> dict[str, list[str]]:
        zones: dict[str, list[str]] = defaultdict(list)
        for i in instances:
            zones[i["zone"]].append(i["name"])
        return zones

    def _instances_verb(self, verb: str, instances: list[InstanceRef], *extra: str) -> None:
        for zone, names in self._by_zone(instances).items():
            args = ["gcloud", "compute", "instances", verb, *names, *extra]
            if zone:
                args.append(f"--zone={zone}")
            self._run_or_fail(args, f"Failed to {verb} instances: {' '.join(names)}")

    def start_instances(self, instances: list[InstanceRef]) -> None:
        self._instances_verb("start", instances)

    def stop_instances(self, instances: list[InstanceRef]) -> None:
        self._instances_verb("stop", instances)

    def delete_instances(self, instances: list[InstanceRef]) -> None:
        self._instances_verb("delete", instances, "--delete-disks=all")

    def create_volumes(self, request: CreateVolumeRequest) -> None:
        args = [
            "gcloud",
            "compute",
            "disks",
            "create",
            *request.names,
            "--labels",
            self.format_labels(request.labels),
            f"--type={self.DEFAULT_DISK_TYPE}",
            f"--size={request.size_gb}GB",
        ]
        self._run_or_fail(args, "Failed to create disks")

    def _owned_instance(self, owner: str, name: str) -> InstanceRef:
        """The owner's instance named exactly ``name``; exits when there is none."""
        refs = self.find_instances(InstanceSelector(owner=owner, name=name, exact=True))
        if not refs:
            error(f"Instance '{name}' not found")
        return refs[0]

    @staticmethod
    def _zone_args(ref: InstanceRef) -> list[str]:
        return [f"--zone={ref['zone']}"] if ref["zone"] else []

    def attach_volume(self, request: AttachVolumeRequest) -> None:
        instance = self._owned_instance(request.owner, request.instance_name)
        disks = run_cmd_json(
            "gcloud",
            "compute",
            "disks",
            "list",
            f"--filter=labels.owner={request.owner} AND name={request.volume_name}",
            fail_msg=f"Failed to query disk: '{request.volume_name}'",
        )
        if not disks:
            error(f"Disk '{request.volume_name}' not found")

        args = [
            "gcloud",
            "compute",
            "instances",
            "attach-disk",
            request.instance_name,
            f"--disk={request.volume_name}",
            f"--device-name={request.device}",
            *self._zone_args(instance),
        ]
        self._run_or_fail(args, f"Failed to attach disk '{request.volume_name}'")

    def tag_instance(self, request: TagInstanceRequest) -> None:
        instance = self._owned_instance(request.owner, request.instance_name)
        args = [
            "gcloud",
            "compute",
            "instances",
            "add-tags",
            request.instance_name,
            f"--tags={','.join(request.network_tags)}",
            *self._zone_args(instance),
        ]
        self._run_or_fail(args, f"Failed to tag instance '{request.instance_name}'")

    def set_external_access(self, owner: str, name: str, enabled: bool) -> None:
        """Add (online) or remove (airgap) the instance's external NAT access config."""
        zone_args = self._zone_args(self._owned_instance(owner, name))
        if enabled:
            args = [
                "gcloud",
                "compute",
                "instances",
                "add-access-config",
                name,
                f"--access-config-name={self.ACCESS_CONFIG_NAME}",
                *zone_args,
            ]
            self._run_or_fail(args, f"Failed to add external access to '{name}'")
            return

        access_config = run_cmd(
            "gcloud",
            "compute",
            "instances",
            "describe",
            name,
            *zone_args,
            "--format=value(networkInterfaces[0].accessConfigs[0].name)",
            fail_msg=f"Failed to describe instance '{name}'",
        )
        if not access_config:
            error(f"Instance '{name}' has no external access config")
        args = [
            "gcloud",
            "compute",
            "instances",
            "delete-access-config",
            name,
            f"--access-config-name={access_config}",
            *zone_args,
        ]
        self._run_or_fail(args, f"Failed to remove external access from '{name}'")

    def iap_ssh(self, name: str, max_attempts: int = SSH_MAX_ATTEMPTS) -> int:
        """SSH through IAP, retrying failed sessions that end quickly (instance booting).

        :return: Exit status of the last ssh session
        """
        args = ["gcloud", "compute", "ssh", "--tunnel-through-iap", name]
        returncode = 1
        for attempt in range(1, max_attempts + 1):
            start = time.monotonic()
            returncode = run_cmd_passthrough(*args)
            if returncode == 0 or time.monotonic() - start > self.SSH_MIN_SESSION:
                return returncode
            if attempt < max_attempts:
                log(f"SSH session ended early (attempt {attempt}/{max_attempts}), retrying...")
                time.sleep(self.SSH_RETRY_DELAY)
        return returncode


def get_provider(provider: ProviderName, *, region: str | None = None, aws_profile: str | None = None) -> Provider:
    """Get a provider instance with defaults applied."""
    if provider == "aws":
        return AWSProvider(region=region, aws_profile=aws_profile)
    elif provider == "gcp":
        return GCPProvider()
    error(f"Unknown provider: {provider}. Available: aws, gcp")
