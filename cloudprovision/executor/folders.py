from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from cloudprovision.errors import UnknownResourceFolder

from .schema import RetryPolicy, VariableValue


class FolderDefinition(BaseModel):
    """How one terraform working directory is driven."""
    name: str
    description: str = ""
    project_variable: str = "project_id"
    region_variable: str = "region"
    capabilities_already_enabled: bool = False
    # resource addresses applied with -target during the capability phase
    capability_targets: List[str] = Field(default_factory=lambda: ["google_project_service.apis"])
    required_services: List[str] = Field(default_factory=list)
    long_running: bool = False
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    required_variables: List[str] = Field(default_factory=list)
    defaults: Dict[str, VariableValue] = Field(default_factory=dict)
    # expected output key -> default; "{var}" placeholders resolve against the request variables
    output_keys: Dict[str, Any] = Field(default_factory=dict)
    await_completion: bool = False
    completion_identifier_output: Optional[str] = None
    completion_identifier_variable: Optional[str] = None

    class Config:
        frozen = True


_STANDARD_RETRY = RetryPolicy(max_attempts=3, base_delay_seconds=60)

BUILTIN_FOLDERS: Dict[str, FolderDefinition] = {
    "producer": FolderDefinition(
        name="producer",
        description="Producer VPC, internal load balancer and PSC service attachment",
        required_services=["compute.googleapis.com", "servicenetworking.googleapis.com"],
        retry_policy=_STANDARD_RETRY,
        required_variables=["project_id", "region"],
        output_keys={
            "project_id": "{project_id}",
            "region": "{region}",
            "vpc_name": "",
            "subnet_name": "",
            "psc_subnet_name": "",
            "instance_name": "",
            "instance_group_name": "",
            "backend_service_name": "",
            "health_check_name": "",
            "forwarding_rule_name": "",
            "service_attachment_name": "",
            "service_attachment_uri": "",
            "allowed_consumer_project_ids": [],
            "psc_ip_range": "",
            "psc_ip_range_name": "",
            "vpc_self_link": "",
        },
    ),
    "consumer": FolderDefinition(
        name="consumer",
        description="Consumer VPC and PSC endpoint pointing at a service attachment",
        required_services=["compute.googleapis.com"],
        retry_policy=_STANDARD_RETRY,
        required_variables=["project_id", "service_attachment_uri"],
        defaults={
            "region": "us-central1",
            "vpc_name": "consumer-vpc",
            "subnet_name": "consumer-subnet",
            "psc_endpoint_name": "psc-endpoint",
            "reserved_ip_name": "psc-reserved-ip",
        },
        output_keys={
            "project_id": "{project_id}",
            "region": "{region}",
            "vpc_name": "{vpc_name}",
            "vm_subnet_name": "",
            "psc_subnet_name": "",
            "vm_instance_name": "",
            "vm_internal_ip": "",
            "vpc_self_link": "",
            "vm_subnet_self_link": "",
            "psc_subnet_self_link": "",
        },
    ),
    "create-vm": FolderDefinition(
        name="create-vm",
        description="Single VM inside the consumer VPC",
        capabilities_already_enabled=True,
        required_services=["compute.googleapis.com"],
        retry_policy=RetryPolicy(max_attempts=1, base_delay_seconds=0),
        required_variables=["project_id"],
        defaults={
            "region": "us-central1",
            "instance_name": "consumer-vm",
            "machine_type": "e2-micro",
            "os_image": "debian-cloud/debian-12",
        },
        output_keys={
            "project_id": "{project_id}",
            "region": "{region}",
            "instance_name": "{instance_name}",
            "instance_id": "",
            "zone": "{region}-a",
            "internal_ip": "",
            "subnet_name": "vm-subnet",
            "vpc_name": "consumer-vpc",
            "machine_type": "{machine_type}",
            "os_image": "{os_image}",
        },
    ),
    "create-sql": FolderDefinition(
        name="create-sql",
        description="Cloud SQL instance published over private service connect",
        project_variable="producer_project_id",
        capabilities_already_enabled=True,
        required_services=["sqladmin.googleapis.com", "compute.googleapis.com"],
        long_running=True,
        retry_policy=_STANDARD_RETRY,
        required_variables=["producer_project_id", "allowed_consumer_project_id"],
        defaults={
            "region": "us-central1",
            "instance_id": "producer-sql",
            "tier": "db-f1-micro",
            "database_version": "POSTGRES_17",
            "deletion_protection": False,
            "backup_enabled": True,
            "backup_start_time": "02:00",
            "maintenance_day": 7,
            "maintenance_hour": 2,
            "maintenance_update_track": "stable",
        },
        output_keys={
            "region": "{region}",
            "instance_name": "{instance_id}",
            "instance_connection_name": "",
            "private_ip_address": "",
            "database_name": "postgres",
            "user_name": "postgres",
            "allowed_consumer_project_id": "{allowed_consumer_project_id}",
            "service_attachment_uri": "",
        },
        await_completion=True,
        completion_identifier_output="instance_name",
        completion_identifier_variable="instance_id",
    ),
}


class FolderRegistry:
    """Built-in folder definitions, optionally overridden by YAML/JSON packs."""

    def __init__(self, packs_dir: Optional[Path] = None) -> None:
        self.packs_dir = packs_dir

    def list(self) -> List[str]:
        names = set(BUILTIN_FOLDERS)
        if self.packs_dir and self.packs_dir.exists():
            for p in self.packs_dir.glob("*.yaml"):
                names.add(p.stem)
            for p in self.packs_dir.glob("*.json"):
                names.add(p.stem)
        return sorted(names)

    def get(self, name: str) -> FolderDefinition:
        data = self._load_pack(name)
        builtin = BUILTIN_FOLDERS.get(name)
        if data is None:
            if builtin is None:
                raise UnknownResourceFolder(name)
            return builtin
        data.setdefault("name", name)
        if builtin is not None:
            # pack keys win over the built-in definition
            data = {**builtin.model_dump(), **data}
        return FolderDefinition.model_validate(data)

    def _load_pack(self, name: str) -> Optional[Dict[str, Any]]:
        if not self.packs_dir:
            return None
        y = self.packs_dir / f"{name}.yaml"
        j = self.packs_dir / f"{name}.json"
        if y.exists():
            return yaml.safe_load(y.read_text("utf-8")) or {}
        if j.exists():
            return json.loads(j.read_text("utf-8"))
        return None
