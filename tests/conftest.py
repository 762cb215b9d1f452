"""Shared fixtures: isolated environment for unit tests, a live instance for integration tests."""

import pytest
from uuid import uuid4

from ohmyreplicated import instances
from ohmyreplicated.config import Config
from ohmyreplicated.providers import get_provider

ISOLATED_VARS = [
    "AWSUSER",
    "AWSPREFIX",
    "GUSER",
    "GPREFIX",
    "AWS_PROFILE",
    "CLOUDSDK_CONFIG",
    "OHMYREPLICATED_SSH_USERS",
    "OHMYREPLICATED_FORWARD_PORTS",
]


def pytest_addoption(parser):
    parser.addoption(
        "--provider",
        default="aws",
        help="Cloud provider for integration tests: aws or gcp (default: aws)",
    )
    parser.addoption(
        "--image",
        default=None,
        help="AMI ID (aws) or image name pattern (gcp) for integration tests",
    )
    parser.addoption(
        "--machine-type",
        default=None,
        help="Instance type for integration tests (default: t3.micro / e2-small)",
    )


@pytest.fixture(autouse=True)
def isolated_env(request, monkeypatch, tmp_path):
    """Fake AWS credentials, empty HOME, no identity variables."""
    if request.node.get_closest_marker("integration"):
        yield
        return

    for var in ISOLATED_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "aws-config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "aws-credentials"))
    monkeypatch.setattr("ohmyreplicated.providers.load_dotenv", lambda *a, **k: False)
    monkeypatch.setattr("ohmyreplicated.config.load_dotenv", lambda *a, **k: False)
    yield


@pytest.fixture
def aws_config():
    return Config(provider="aws", user="alice", prefix="dev")


@pytest.fixture
def gcp_config():
    return Config(provider="gcp", user="alice", prefix="dev")


@pytest.fixture(scope="session")
def provider_name(request):
    return request.config.getoption("--provider")


@pytest.fixture(scope="session")
def live_instance(request, provider_name):
    """Create a real instance expiring in one day, yield its unprefixed name, delete on teardown."""
    image = request.config.getoption("--image")
    if not image:
        pytest.skip("--image is required for integration tests")
    machine_type = request.config.getoption("--machine-type") or (
        "t3.micro" if provider_name == "aws" else "e2-small"
    )

    config = Config.from_env(provider_name)
    p = get_provider(provider_name)
    name = f"test-omr-{uuid4().hex[:8]}"

    print(f"\n[INFO] Creating instance '{name}' on {provider_name}...")
    instances.create_instances(config, p, image, machine_type, [name], duration="1d")

    try:
        yield name
    finally:
        try:
            instances.delete_instances(config, p, name, exact=True)
        except SystemExit:
            pass
