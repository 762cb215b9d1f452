"""Unit tests for command line parsing and dispatch."""

from unittest.mock import MagicMock

import pytest

from ohmyreplicated import cli
from ohmyreplicated.config import Config


@pytest.fixture
def dispatched(monkeypatch, aws_config, gcp_config):
    """Replace provider construction and instance operations with recorders."""
    aws_provider, gcp_provider = MagicMock(name="aws"), MagicMock(name="gcp")
    monkeypatch.setattr(cli, "_aws", lambda region=None, profile=None: (aws_config, aws_provider))
    monkeypatch.setattr(cli, "_gcp", lambda: (gcp_config, gcp_provider))

    ops = MagicMock()
    ops.ssh_instance.return_value = 0
    for name in (
        "show_env",
        "list_instances",
        "create_instances",
        "start_instances",
        "stop_instances",
        "delete_instances",
        "create_volumes",
        "attach_volume",
        "tag_instance",
        "search_images",
        "set_external_access",
        "ssh_instance",
    ):
        monkeypatch.setattr(cli.instances, name, getattr(ops, name))
    ops.aws, ops.gcp = aws_provider, gcp_provider
    ops.aws_config, ops.gcp_config = aws_config, gcp_config
    return ops


def invoke(*tokens):
    try:
        cli.app(list(tokens))
    except SystemExit as e:
        assert not e.code


def test_aws_create(dispatched):
    invoke("aws", "create", "-d", "never", "ami-12345678", "t3.medium", "kots1", "kots2")
    dispatched.create_instances.assert_called_once_with(
        dispatched.aws_config, dispatched.aws, "ami-12345678", "t3.medium", ("kots1", "kots2"), "never"
    )


def test_aws_create_default_duration(dispatched):
    invoke("aws", "create", "ami-12345678", "t3.medium", "kots1")
    assert dispatched.create_instances.call_args.args[-1] is None


def test_gcp_create_long_duration_flag(dispatched):
    invoke("gcp", "create", "ubuntu-2204", "n2-standard-4", "airgap1", "--duration", "2w")
    dispatched.create_instances.assert_called_once_with(
        dispatched.gcp_config, dispatched.gcp, "ubuntu-2204", "n2-standard-4", ("airgap1",), "2w"
    )


@pytest.mark.parametrize("verb", ["start", "stop", "delete"])
def test_lifecycle_verbs(dispatched, verb):
    invoke("aws", verb, "kots")
    getattr(dispatched, f"{verb}_instances").assert_called_once_with(
        dispatched.aws_config, dispatched.aws, "kots", exact=False
    )


def test_exact_flag(dispatched):
    invoke("gcp", "delete", "kots1", "--exact")
    dispatched.delete_instances.assert_called_once_with(
        dispatched.gcp_config, dispatched.gcp, "kots1", exact=True
    )


def test_list(dispatched):
    invoke("gcp", "list")
    dispatched.list_instances.assert_called_once_with(dispatched.gcp_config, dispatched.gcp)


def test_ssh_forward(dispatched):
    invoke("aws", "ssh-forward", "kots1")
    dispatched.ssh_instance.assert_called_once_with(
        dispatched.aws_config, dispatched.aws, "kots1", forward=True
    )


def test_ssh_exit_status_propagates(dispatched):
    dispatched.ssh_instance.return_value = 255
    with pytest.raises(SystemExit) as exc:
        cli.app(["gcp", "ssh", "kots1"])
    assert exc.value.code == 255


def test_aws_volume_and_attach(dispatched):
    invoke("aws", "volume", "data", "50")
    dispatched.create_volumes.assert_called_once_with(
        dispatched.aws_config, dispatched.aws, ["data"], "50", None
    )
    invoke("aws", "attach", "kots1", "data", "--device", "/dev/sdg")
    dispatched.attach_volume.assert_called_once_with(
        dispatched.aws_config, dispatched.aws, "kots1", "data", "/dev/sdg"
    )


def test_gcp_disk(dispatched):
    invoke("gcp", "disk", "data", "logs", "--size-gb", "20")
    dispatched.create_volumes.assert_called_once_with(
        dispatched.gcp_config, dispatched.gcp, ("data", "logs"), 20, None
    )


def test_aws_tag(dispatched):
    invoke("aws", "tag", "kots1", "team=kots", "env=dev")
    dispatched.tag_instance.assert_called_once_with(
        dispatched.aws_config, dispatched.aws, "kots1", ("team=kots", "env=dev")
    )


def test_gcp_tag(dispatched):
    invoke("gcp", "tag", "kots1", "http-server,https-server")
    dispatched.tag_instance.assert_called_once_with(
        dispatched.gcp_config, dispatched.gcp, "kots1", ["http-server,https-server"]
    )


def test_amis_default_term(dispatched):
    invoke("aws", "amis")
    dispatched.search_images.assert_called_once_with(dispatched.aws_config, dispatched.aws, "ubuntu")


@pytest.mark.parametrize("verb,enabled", [("online", True), ("airgap", False)])
def test_external_access(dispatched, verb, enabled):
    invoke("gcp", verb, "kots1", "kots2")
    dispatched.set_external_access.assert_called_once_with(
        dispatched.gcp_config, dispatched.gcp, ("kots1", "kots2"), enabled=enabled
    )


def test_main_sets_up_logging(monkeypatch):
    setup = MagicMock()
    app = MagicMock()
    monkeypatch.setattr(cli, "setup_logging", setup)
    monkeypatch.setattr(cli, "app", app)
    monkeypatch.setenv("OHMYREPLICATED_LOG_LEVEL", "DEBUG")

    cli.main()

    setup.assert_called_once_with("DEBUG")
    app.assert_called_once_with()


def test_aws_helper_reads_environment(monkeypatch):
    monkeypatch.setenv("AWSUSER", "alice")
    monkeypatch.setattr(cli, "get_provider", lambda name, **kwargs: (name, kwargs))

    config, provider = cli._aws(region="eu-west-1")

    assert config == Config.from_env("aws")
    assert config.user == "alice"
    assert provider == ("aws", {"region": "eu-west-1", "aws_profile": None})
