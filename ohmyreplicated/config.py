"""Configuration read once from the environment at program start."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import load_dotenv

from .types import ProviderName
from .utils import error

DEFAULT_SSH_USERS = ("ec2-user", "ubuntu", "admin", "centos", "fedora")
DEFAULT_FORWARD_PORTS = (8800, 8888)

USER_VARS: dict[ProviderName, str] = {"aws": "AWSUSER", "gcp": "GUSER"}
PREFIX_VARS: dict[ProviderName, str] = {"aws": "AWSPREFIX", "gcp": "GPREFIX"}


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Config:
    """Identity, name prefix and SSH settings for one provider."""

    provider: ProviderName
    user: str | None = None
    prefix: str | None = None
    ssh_users: tuple[str, ...] = DEFAULT_SSH_USERS
    forward_ports: tuple[int, ...] = DEFAULT_FORWARD_PORTS

    @classmethod
    def from_env(
        cls, provider: ProviderName, environ: Mapping[str, str] | None = None
    ) -> "Config":
        """Build config from ``environ`` (default: process environment plus .env).

        Reads AWSUSER/AWSPREFIX for aws and GUSER/GPREFIX for gcp, plus
        OHMYREPLICATED_SSH_USERS and OHMYREPLICATED_FORWARD_PORTS.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        ssh_users = tuple(_split_list(environ.get("OHMYREPLICATED_SSH_USERS"))) or DEFAULT_SSH_USERS

        ports = _split_list(environ.get("OHMYREPLICATED_FORWARD_PORTS"))
        if any(not p.isdecimal() for p in ports):
            error(f"Invalid OHMYREPLICATED_FORWARD_PORTS: '{environ['OHMYREPLICATED_FORWARD_PORTS']}'")
        forward_ports = tuple(int(p) for p in ports) or DEFAULT_FORWARD_PORTS

        return cls(
            provider=provider,
            user=environ.get(USER_VARS[provider]) or None,
            prefix=environ.get(PREFIX_VARS[provider]) or None,
            ssh_users=ssh_users,
            forward_ports=forward_ports,
        )

    @property
    def user_var(self) -> str:
        return USER_VARS[self.provider]

    def require_user(self) -> str:
        """:return: The owner identity, exiting with status 1 when unset"""
        if not self.user:
            error(
                f"{self.user_var} environment variable not set\n"
                f'Set {self.user_var} to your username: export {self.user_var}="username"'
            )
        return self.user

    def qualify(self, name: str, kind: str | None = None) -> str:
        """Prepend the configured prefix (and optional resource kind) to ``name``.

        ``qualify("db")`` is ``"<prefix>-db"`` or ``"db"``;
        ``qualify("db", "vol")`` is ``"<prefix>-vol-db"`` or ``"vol-db"``.
        """
        parts = [p for p in (self.prefix, kind, name) if p]
        return "-".join(parts)
