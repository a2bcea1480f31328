# cloudprovision/settings.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file if it exists (from project root or current directory)
load_dotenv()

ENV_PREFIX = "CLOUDPROVISION_"


class ProvisionSettings(BaseModel):
    """
    Runtime knobs for the provisioning pipeline.

    The timing values are empirically tuned for GCP's observed propagation latency,
    so they are configuration rather than constants:
    - propagation_wait_seconds: pause between the capability phase and the full apply
    - poll_*: ceilings for waiting on private service connect enablement
    - deploy_timeout_minutes: the overall deadline a caller races the pipeline against
    """
    terraform_bin: str = Field(default="terraform")
    gcloud_bin: str = Field(default="gcloud")
    terraform_root: Path = Field(default=Path("terraform"))
    packs_dir: Optional[Path] = Field(default=None)

    command_timeout_seconds: float = Field(default=900.0, gt=0)
    propagation_wait_seconds: float = Field(default=120.0, ge=0)
    deploy_timeout_minutes: float = Field(default=35.0, gt=0)
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    poll_max_wait_minutes: float = Field(default=30.0, ge=0)
    context_switch_attempts: int = Field(default=3, ge=1)

    class Config:
        frozen = True

    @classmethod
    def default_from_env(cls) -> "ProvisionSettings":
        """Seed every field from CLOUDPROVISION_* variables when present."""
        return cls.model_validate(_env_overrides())

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ProvisionSettings":
        """
        Load a YAML settings file and merge it with the env defaults.

        Rules:
        - Start with defaults from env
        - Keys present in the file win over env defaults
        """
        base = cls.default_from_env().model_dump()
        data = yaml.safe_load(Path(path).read_text("utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"settings file {path} must contain a mapping")
        return cls.model_validate(_deep_merge(base, data))

    def folder_dir(self, folder: str) -> Path:
        return (self.terraform_root / folder).resolve()


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in ProvisionSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}", "").strip()
        if raw:
            out[name] = raw
    return out


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (patch or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_settings(path: Optional[Union[str, Path]] = None) -> ProvisionSettings:
    if path is None:
        path = os.getenv(f"{ENV_PREFIX}CONFIG", "").strip() or None
    if path:
        return ProvisionSettings.from_file(path)
    return ProvisionSettings.default_from_env()
