"""Integration tests for the full instance lifecycle against a real cloud account.

Tests are sequential and stateful: each test depends on the instance state
left by the previous one. Requires AWSUSER (or GUSER) and provider credentials.
Run with:

    pytest tests/ -m integration --provider aws --image ami-0abcdef1234567890
    pytest tests/ -m integration --provider gcp --image ubuntu-2204
"""

import time

import pytest

from ohmyreplicated import instances, ssh
from ohmyreplicated.config import Config
from ohmyreplicated.expiry import resolve_expiration
from ohmyreplicated.providers import get_provider
from ohmyreplicated.types import InstanceSelector

POLL_INTERVAL = 10
POLL_TIMEOUT = 300


@pytest.fixture(scope="module")
def context(provider_name):
    config = Config.from_env(provider_name)
    return config, get_provider(provider_name)


def _status(context, name: str) -> str | None:
    config, p = context
    qualified = config.qualify(name)
    item = next((i for i in p.list_instances(config.user) if i["name"] == qualified), None)
    return item["status"] if item else None


def _wait_for(context, name: str, states: tuple[str, ...]) -> str | None:
    deadline = time.monotonic() + POLL_TIMEOUT
    status = _status(context, name)
    while status not in states and time.monotonic() < deadline:
        time.sleep(POLL_INTERVAL)
        status = _status(context, name)
    return status


@pytest.mark.integration
def test_01_create(context, live_instance):
    """Instance listed with owner and tomorrow's expiration label."""
    config, p = context
    status = _wait_for(context, live_instance, p.RUNNING_STATES)
    assert status in p.RUNNING_STATES, f"Instance not running: {status}"

    item = next(i for i in p.list_instances(config.user) if i["name"] == config.qualify(live_instance))
    assert item["expires"] == resolve_expiration("1d").label


@pytest.mark.integration
def test_02_ssh_reachable(context, live_instance):
    """Public address assigned; AWS instances accept one of the configured users."""
    config, p = context
    address = p.get_instance_address(config.user, config.qualify(live_instance))
    assert address and address["public_ip"], "Instance has no public IP"

    if p.provider_name == "aws":
        image_name = p.get_image_name(address["image"])
        candidates = ssh.order_candidates(config.ssh_users, image_name)
        deadline = time.monotonic() + POLL_TIMEOUT
        while not any(ssh.can_connect(address["public_ip"], u) for u in candidates):
            assert time.monotonic() < deadline, f"{address['public_ip']} not reachable via SSH"
            time.sleep(POLL_INTERVAL)


@pytest.mark.integration
def test_03_stop(context, live_instance):
    config, p = context
    stopped = instances.stop_instances(config, p, live_instance, exact=True)
    assert [i["name"] for i in stopped] == [config.qualify(live_instance)]
    assert _wait_for(context, live_instance, p.STOPPED_STATES) in p.STOPPED_STATES


@pytest.mark.integration
def test_04_stop_again_finds_nothing(context, live_instance):
    """A stopped instance is not matched by stop, and nothing is mutated."""
    config, p = context
    with pytest.raises(SystemExit):
        instances.stop_instances(config, p, live_instance, exact=True)
    assert _status(context, live_instance) in p.STOPPED_STATES


@pytest.mark.integration
def test_05_start(context, live_instance):
    config, p = context
    instances.start_instances(config, p, live_instance, exact=True)
    assert _wait_for(context, live_instance, p.RUNNING_STATES) in p.RUNNING_STATES


@pytest.mark.integration
def test_06_tag(context, live_instance):
    config, p = context
    if p.provider_name == "aws":
        request = instances.tag_instance(config, p, live_instance, ["purpose=integration"])
        assert request.tags == {"purpose": "integration"}
    else:
        request = instances.tag_instance(config, p, live_instance, ["http-server"])
        assert request.network_tags == ("http-server",)


@pytest.mark.integration
def test_07_delete(context, live_instance):
    """Instance deleted and absent from the owner's live instances."""
    config, p = context
    instances.delete_instances(config, p, live_instance, exact=True)

    deadline = time.monotonic() + POLL_TIMEOUT
    selector = InstanceSelector(owner=config.user, name=config.qualify(live_instance), exact=True)
    while p.find_instances(selector):
        assert time.monotonic() < deadline, "Instance still listed after deletion"
        time.sleep(POLL_INTERVAL)
