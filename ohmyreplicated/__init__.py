"""oh-my-replicated - labelled developer instances on AWS and Google Cloud."""

from .cli import app
from .config import Config
from .expiry import Duration, Expiration, ExpiresOn, NeverExpires, resolve_expiration
from .providers import AWSProvider, GCPProvider, Provider, get_provider
from .types import (
    MANAGED_BY,
    InstanceListItem,
    InstanceRef,
    InstanceSelector,
    ProviderName,
    ResourceLabels,
)
from .utils import error, log, run_cmd, run_cmd_json, warn

__all__ = [
    "AWSProvider",
    "GCPProvider",
    "Provider",
    "get_provider",
    "app",
    "Config",
    "Duration",
    "Expiration",
    "ExpiresOn",
    "NeverExpires",
    "resolve_expiration",
    "log",
    "warn",
    "error",
    "run_cmd",
    "run_cmd_json",
    "MANAGED_BY",
    "InstanceListItem",
    "InstanceRef",
    "InstanceSelector",
    "ProviderName",
    "ResourceLabels",
]
