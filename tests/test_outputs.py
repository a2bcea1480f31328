import json

from cloudprovision.executor.folders import BUILTIN_FOLDERS, FolderDefinition
from cloudprovision.executor.outputs import TFVARS_FILE, parse_outputs, write_tfvars

from .conftest import tf_output

SQL = BUILTIN_FOLDERS["create-sql"]
VM = BUILTIN_FOLDERS["create-vm"]


def test_missing_keys_get_documented_defaults():
    raw = tf_output(instance_name="db-1", private_ip_address="10.0.0.5")
    record = parse_outputs(raw, SQL, {"region": "europe-west1", "allowed_consumer_project_id": "consumer-1"})

    assert record["instance_name"] == "db-1"
    assert record["private_ip_address"] == "10.0.0.5"
    assert record["database_name"] == "postgres"
    assert record["user_name"] == "postgres"
    assert record["region"] == "europe-west1"
    assert record["allowed_consumer_project_id"] == "consumer-1"
    assert record["instance_connection_name"] == ""
    assert not record.degraded


def test_placeholder_defaults_resolve_from_variables():
    record = parse_outputs("{}", VM, {"project_id": "p1", "region": "us-east1", "instance_name": "vm-a"})

    assert record["zone"] == "us-east1-a"
    assert record["instance_name"] == "vm-a"
    assert record["subnet_name"] == "vm-subnet"
    assert record["vpc_name"] == "consumer-vpc"


def test_empty_string_value_is_replaced_by_default():
    record = parse_outputs(tf_output(database_name=""), SQL, {})
    assert record["database_name"] == "postgres"


def test_unparseable_output_degrades_to_fallback():
    record = parse_outputs("not json at all", SQL, {"producer_project_id": "prod-1", "region": "us-central1"})

    assert record.degraded
    assert dict(record.values) == {"producer_project_id": "prod-1", "region": "us-central1"}


def test_non_object_json_degrades_to_fallback():
    record = parse_outputs("[1, 2]", VM, {"project_id": "p1", "region": "r1"})
    assert record.degraded
    assert record["project_id"] == "p1"


def test_folder_without_expected_keys_returns_everything():
    folder = FolderDefinition(name="custom")
    record = parse_outputs(tf_output(a="1", b=["x"]), folder)
    assert dict(record.values) == {"a": "1", "b": ["x"]}


def test_parse_is_idempotent():
    raw = tf_output(instance_name="db-1")
    variables = {"region": "r"}
    assert parse_outputs(raw, SQL, variables) == parse_outputs(raw, SQL, variables)


def test_write_tfvars(tmp_path):
    path = write_tfvars(tmp_path / "create-sql", {"instance_id": "db", "default_password": "hunter2"})

    assert path.name == TFVARS_FILE
    assert json.loads(path.read_text()) == {"instance_id": "db", "default_password": "hunter2"}
