import json

import pytest

from cloudprovision.errors import UnknownResourceFolder
from cloudprovision.executor.folders import BUILTIN_FOLDERS, FolderRegistry


def test_builtin_folders():
    registry = FolderRegistry()
    assert registry.list() == ["consumer", "create-sql", "create-vm", "producer"]

    sql = registry.get("create-sql")
    assert sql.long_running
    assert sql.capabilities_already_enabled
    assert sql.project_variable == "producer_project_id"
    assert sql.retry_policy.max_attempts == 3

    vm = registry.get("create-vm")
    assert vm.retry_policy.max_attempts == 1
    assert vm.retry_policy.base_delay_seconds == 0

    assert not registry.get("producer").capabilities_already_enabled


def test_unknown_folder():
    with pytest.raises(UnknownResourceFolder) as excinfo:
        FolderRegistry().get("missing")
    assert isinstance(excinfo.value, KeyError)
    assert str(excinfo.value) == "Unknown resource folder: missing"


def test_yaml_pack_overrides_builtin(tmp_path):
    (tmp_path / "create-vm.yaml").write_text(
        "retry_policy:\n  max_attempts: 2\n  base_delay_seconds: 15\ndefaults:\n  machine_type: e2-small\n"
    )

    vm = FolderRegistry(tmp_path).get("create-vm")

    assert vm.retry_policy.max_attempts == 2
    assert vm.defaults == {"machine_type": "e2-small"}
    assert vm.capabilities_already_enabled
    assert BUILTIN_FOLDERS["create-vm"].retry_policy.max_attempts == 1


def test_json_pack_adds_folder(tmp_path):
    (tmp_path / "bucket.json").write_text(json.dumps({"description": "GCS bucket", "required_variables": ["project_id"]}))
    registry = FolderRegistry(tmp_path)

    assert "bucket" in registry.list()
    bucket = registry.get("bucket")
    assert bucket.name == "bucket"
    assert bucket.capability_targets == ["google_project_service.apis"]
