from pathlib import Path

import pytest
from pydantic import ValidationError

from cloudprovision.settings import ProvisionSettings, load_settings


def test_defaults():
    s = ProvisionSettings()
    assert s.propagation_wait_seconds == 120
    assert s.command_timeout_seconds == 900
    assert s.deploy_timeout_minutes == 35
    assert s.poll_interval_seconds == 30
    assert s.poll_max_wait_minutes == 30
    assert s.terraform_bin == "terraform"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CLOUDPROVISION_PROPAGATION_WAIT_SECONDS", "5")
    monkeypatch.setenv("CLOUDPROVISION_TERRAFORM_BIN", "/opt/bin/terraform")

    s = ProvisionSettings.default_from_env()

    assert s.propagation_wait_seconds == 5
    assert s.terraform_bin == "/opt/bin/terraform"


def test_file_wins_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CLOUDPROVISION_POLL_INTERVAL_SECONDS", "10")
    monkeypatch.setenv("CLOUDPROVISION_GCLOUD_BIN", "/usr/lib/gcloud")
    path = tmp_path / "settings.yaml"
    path.write_text("poll_interval_seconds: 15\nterraform_root: /srv/terraform\n")

    s = ProvisionSettings.from_file(path)

    assert s.poll_interval_seconds == 15
    assert s.gcloud_bin == "/usr/lib/gcloud"
    assert s.terraform_root == Path("/srv/terraform")


def test_file_must_be_a_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        ProvisionSettings.from_file(path)


def test_load_settings_uses_config_env(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    path.write_text("context_switch_attempts: 5\n")
    monkeypatch.setenv("CLOUDPROVISION_CONFIG", str(path))

    assert load_settings().context_switch_attempts == 5


def test_settings_are_immutable():
    s = ProvisionSettings()
    with pytest.raises(ValidationError):
        s.propagation_wait_seconds = 1


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        ProvisionSettings(command_timeout_seconds=0)


def test_folder_dir(tmp_path):
    s = ProvisionSettings(terraform_root=tmp_path)
    assert s.folder_dir("create-sql") == (tmp_path / "create-sql").resolve()
