"""Input validation for names, identifiers and tags.

The ``is_*`` predicates are pure. The ``require_*`` wrappers log the reason and
exit with status 1 on rejection.
"""

import re

from .utils import error

MAX_NAME_LENGTH = 63
MAX_VOLUME_SIZE_GB = 16384

INSTANCE_NAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?$")
AMI_ID_RE = re.compile(r"^ami-[0-9a-f]{8,17}$")
SEARCH_TERM_RE = re.compile(r"^[A-Za-z0-9._-]+$")
AWS_TAG_RE = re.compile(r"^([^=]+)=(.*)$")
GCP_NETWORK_TAG_RE = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")


def is_valid_instance_name(name: str) -> bool:
    return bool(INSTANCE_NAME_RE.fullmatch(name)) and len(name) <= MAX_NAME_LENGTH


def is_valid_ami_id(ami_id: str) -> bool:
    return bool(AMI_ID_RE.fullmatch(ami_id))


def is_valid_search_term(term: str) -> bool:
    return bool(SEARCH_TERM_RE.fullmatch(term))


def is_valid_network_tag(tag: str) -> bool:
    return bool(GCP_NETWORK_TAG_RE.fullmatch(tag)) and len(tag) <= MAX_NAME_LENGTH


def require_instance_name(name: str) -> str:
    if not INSTANCE_NAME_RE.fullmatch(name):
        error(
            f"Invalid instance name: '{name}'\n"
            "Instance names must contain only letters, numbers, and hyphens"
        )
    if len(name) > MAX_NAME_LENGTH:
        error(f"Instance name too long: '{name}' (max {MAX_NAME_LENGTH} characters)")
    return name


def require_ami_id(ami_id: str) -> str:
    if not is_valid_ami_id(ami_id):
        error(
            f"Invalid AMI ID format: '{ami_id}'\n"
            "AMI IDs must be in format: ami-xxxxxxxx"
        )
    return ami_id


def require_search_term(term: str) -> str:
    if not is_valid_search_term(term):
        error(
            f"Invalid search term: '{term}'\n"
            "Search terms must contain only letters, numbers, dots, hyphens, and underscores"
        )
    return term


def require_volume_size(size: str | int) -> int:
    """:return: Size in GB, between 1 and 16384"""
    text = str(size)
    if not re.fullmatch(r"[0-9]+", text) or not 1 <= int(text) <= MAX_VOLUME_SIZE_GB:
        error(f"Invalid volume size: '{size}' (must be 1-{MAX_VOLUME_SIZE_GB} GB)")
    return int(text)


def parse_aws_tags(pairs: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` arguments, keeping their order."""
    tags = {}
    for pair in pairs:
        match = AWS_TAG_RE.fullmatch(pair)
        if not match:
            error(f"Invalid tag format: '{pair}'. Use KEY=VALUE format.")
        key, value = match.groups()
        tags[key] = value
    return tags


def parse_network_tags(spec: str) -> tuple[str, ...]:
    """Split a comma separated list of GCP network tags."""
    tags = tuple(t.strip() for t in spec.split(",") if t.strip())
    if not tags:
        error("No network tags given")
    for tag in tags:
        if not is_valid_network_tag(tag):
            error(
                f"Invalid network tag: '{tag}'\n"
                "Network tags must be lowercase letters, numbers, and hyphens, starting with a letter"
            )
    return tags
