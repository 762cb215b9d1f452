"""Unit tests for environment-driven configuration."""

import pytest

from ohmyreplicated.config import DEFAULT_FORWARD_PORTS, DEFAULT_SSH_USERS, Config


def test_aws_reads_aws_variables():
    config = Config.from_env("aws", {"AWSUSER": "alice", "AWSPREFIX": "dev", "GUSER": "bob"})
    assert config.user == "alice"
    assert config.prefix == "dev"
    assert config.ssh_users == DEFAULT_SSH_USERS
    assert config.forward_ports == DEFAULT_FORWARD_PORTS


def test_gcp_reads_gcp_variables():
    config = Config.from_env("gcp", {"AWSUSER": "alice", "GUSER": "bob", "GPREFIX": "qa"})
    assert config.user == "bob"
    assert config.prefix == "qa"


def test_empty_values_are_unset():
    config = Config.from_env("aws", {"AWSUSER": "", "AWSPREFIX": ""})
    assert config.user is None
    assert config.prefix is None


def test_ssh_users_and_ports_from_env():
    config = Config.from_env(
        "aws",
        {"OHMYREPLICATED_SSH_USERS": "rocky, ubuntu", "OHMYREPLICATED_FORWARD_PORTS": "30000,8800"},
    )
    assert config.ssh_users == ("rocky", "ubuntu")
    assert config.forward_ports == (30000, 8800)


def test_invalid_forward_ports_exit(caplog):
    with pytest.raises(SystemExit):
        Config.from_env("aws", {"OHMYREPLICATED_FORWARD_PORTS": "8800,http"})
    assert "Invalid OHMYREPLICATED_FORWARD_PORTS" in caplog.text


def test_from_process_environment(monkeypatch):
    monkeypatch.setenv("GUSER", "carol")
    monkeypatch.setenv("GPREFIX", "team")
    config = Config.from_env("gcp")
    assert (config.user, config.prefix) == ("carol", "team")


@pytest.mark.parametrize("name", ["a", "kots1", "my-box-2", "x" * 40])
def test_qualify_with_prefix(name):
    assert Config(provider="gcp", prefix="dev").qualify(name) == f"dev-{name}"


@pytest.mark.parametrize("name", ["a", "kots1", "my-box-2"])
def test_qualify_without_prefix(name):
    assert Config(provider="gcp").qualify(name) == name


def test_qualify_with_kind():
    assert Config(provider="aws", prefix="dev").qualify("data", "vol") == "dev-vol-data"
    assert Config(provider="aws").qualify("data", "vol") == "vol-data"


def test_require_user(aws_config):
    assert aws_config.require_user() == "alice"


@pytest.mark.parametrize("provider,var", [("aws", "AWSUSER"), ("gcp", "GUSER")])
def test_require_user_unset_exits(provider, var, caplog):
    with pytest.raises(SystemExit) as exc:
        Config(provider=provider).require_user()
    assert exc.value.code == 1
    assert f"{var} environment variable not set" in caplog.text
