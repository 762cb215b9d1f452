"""SSH username probing and interactive sessions."""

import shutil
import subprocess

from fabric import Connection

from .utils import error, log, log_cmd

CONNECT_TIMEOUT = 10

SSH_OPTIONS = [
    "-o", "ConnectTimeout=10",
    "-o", "ServerAliveInterval=60",
    "-o", "ServerAliveCountMax=3",
    "-o", "StrictHostKeyChecking=accept-new",
]

# Image name fragment -> login user, checked in order
IMAGE_USER_HINTS = [
    ("ubuntu", "ubuntu"),
    ("debian", "admin"),
    ("centos", "centos"),
    ("fedora", "fedora"),
    ("amzn", "ec2-user"),
    ("amazon", "ec2-user"),
    ("al2023", "ec2-user"),
    ("rhel", "ec2-user"),
]


def guess_ssh_user(image_name: str | None) -> str | None:
    """Login user conventionally baked into an image, from its name."""
    if not image_name:
        return None
    lowered = image_name.lower()
    return next((user for fragment, user in IMAGE_USER_HINTS if fragment in lowered), None)


def order_candidates(candidates: tuple[str, ...] | list[str], image_name: str | None = None) -> list[str]:
    """Move the image's conventional user to the front of ``candidates``."""
    ordered = list(dict.fromkeys(candidates))
    hint = guess_ssh_user(image_name)
    if hint in ordered:
        ordered.remove(hint)
        ordered.insert(0, hint)
    return ordered


def can_connect(host: str, user: str, timeout: int = CONNECT_TIMEOUT) -> bool:
    """Quick check if ``user`` can log in to ``host``.

    :param host: Host IP address
    :param user: SSH user for connection
    :param timeout: Connection timeout in seconds
    :return: True if reachable, False otherwise
    """
    try:
        with Connection(
            host,
            user=user,
            connect_timeout=timeout,
            connect_kwargs={"look_for_keys": True, "auth_timeout": timeout, "banner_timeout": timeout},
        ) as c:
            c.run("true", hide=True, in_stream=False)
        return True
    except Exception:
        return False


def find_ssh_user(host: str, candidates: list[str], timeout: int = CONNECT_TIMEOUT) -> str:
    """Try each candidate username in order, returning the first that logs in.

    :raises SystemExit: If every candidate fails
    """
    for user in candidates:
        log(f"Trying to connect as {user}@{host}")
        if can_connect(host, user, timeout=timeout):
            return user
    error(f"Could not connect to {host} with any of: {', '.join(candidates)}")


def forward_args(private_ip: str, ports: tuple[int, ...] | list[int]) -> list[str]:
    """``-L port:private_ip:port`` for each forwarded port."""
    args = []
    for port in ports:
        args.extend(["-L", f"{port}:{private_ip}:{port}"])
    return args


def session_args(host: str, user: str | None = None, forwards: list[str] | None = None) -> list[str]:
    target = f"{user}@{host}" if user else host
    return ["ssh", *SSH_OPTIONS, *(forwards or []), target]


def open_session(host: str, user: str | None = None, forwards: list[str] | None = None) -> int:
    """Run an interactive ssh session attached to the terminal.

    :return: Exit status of ssh
    """
    if shutil.which("ssh") is None:
        error("ssh not installed")
    args = session_args(host, user, forwards)
    log_cmd(args)
    return subprocess.run(args).returncode
