"""Shared utility functions."""

import json
import logging
import shlex
import subprocess
import sys

from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("ohmyreplicated")


def setup_logging(level: int | str = logging.INFO) -> None:
    """Set up logging with Rich handler to stderr."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    rich_handler = RichHandler(
        console=Console(stderr=True),
        log_time_format="[%X]",
        show_path=False,
        markup=False,
    )
    rich_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    for name, lvl, propagate in [
        ("boto3", logging.INFO, True),
        ("botocore", logging.WARNING, True),
        ("urllib3", logging.WARNING, True),
        ("paramiko", logging.WARNING, True),
        ("fabric", logging.WARNING, True),
        ("invoke", logging.WARNING, True),
    ]:
        lg = logging.getLogger(name)
        for h in lg.handlers[:]:
            lg.removeHandler(h)
        lg.setLevel(lvl)
        lg.propagate = propagate


def log(msg: str) -> None:
    """Log info message."""
    logger.info(msg)


def warn(msg: str) -> None:
    """Log warning message."""
    logger.warning(msg)


def error(msg: str) -> None:
    """Log error message and exit."""
    logger.error(msg)
    sys.exit(1)


def log_cmd(args: tuple[str, ...] | list[str]) -> None:
    """Echo a provider command before it runs."""
    logger.info(f"+ {shlex.join(args)}")


def run_cmd(*args, check: bool = True, fail_msg: str = "Command failed") -> str:
    """Execute local command and return stdout."""
    result = subprocess.run(args, capture_output=True, text=True)
    if check and result.returncode != 0:
        error(f"{fail_msg}: {result.stderr.strip()}")
    return result.stdout.strip()


def run_cmd_json(*args, fail_msg: str = "Command failed") -> dict | list:
    """Execute command with --format=json and parse output."""
    output = run_cmd(*args, "--format=json", fail_msg=fail_msg)
    return json.loads(output) if output else []


def run_cmd_passthrough(*args) -> int:
    """Echo and execute a command with output going straight to the terminal."""
    log_cmd(args)
    return subprocess.run(args).returncode
