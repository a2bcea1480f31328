from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from cloudprovision.redact import redact_variables

from .folders import FolderDefinition
from .schema import OutputRecord

logger = logging.getLogger(__name__)

TFVARS_FILE = "terraform.tfvars.json"


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def resolve_default(default: Any, variables: Mapping[str, Any]) -> Any:
    """Fill "{name}" placeholders in a string default from the request variables."""
    if isinstance(default, str) and "{" in default:
        return default.format_map(_Blank({k: v for k, v in variables.items() if v is not None}))
    return copy.deepcopy(default)


def fallback_record(folder: FolderDefinition, variables: Mapping[str, Any]) -> OutputRecord:
    """Only what the caller already knows: the project and region it asked for."""
    values = {
        folder.project_variable: variables.get(folder.project_variable, ""),
        "region": variables.get(folder.region_variable, ""),
    }
    return OutputRecord(resource_folder=folder.name, values=values, degraded=True)


def parse_outputs(
    raw: Optional[str],
    folder: FolderDefinition,
    variables: Optional[Mapping[str, Any]] = None,
) -> OutputRecord:
    """
    Convert `terraform output -json` text into an OutputRecord.

    Missing keys get the folder's documented default. Output that is not a JSON
    object at all degrades to fallback_record instead of raising: the resources
    exist even when reading them back failed.
    """
    variables = variables or {}
    try:
        data = json.loads(raw or "")
    except ValueError:
        logger.warning(f"Unparseable terraform output for {folder.name}; using fallback record")
        return fallback_record(folder, variables)
    if not isinstance(data, dict):
        logger.warning(f"terraform output for {folder.name} is {type(data).__name__}, not an object")
        return fallback_record(folder, variables)

    found: Dict[str, Any] = {}
    for key, entry in data.items():
        found[key] = entry.get("value") if isinstance(entry, dict) else entry

    if not folder.output_keys:
        return OutputRecord(resource_folder=folder.name, values=found)

    values: Dict[str, Any] = {}
    for key, default in folder.output_keys.items():
        value = found.get(key)
        values[key] = resolve_default(default, variables) if value in (None, "") else value
    return OutputRecord(resource_folder=folder.name, values=values)


def write_tfvars(working_dir: Path, variables: Mapping[str, Any]) -> Path:
    working_dir.mkdir(parents=True, exist_ok=True)
    path = working_dir / TFVARS_FILE
    path.write_text(json.dumps(dict(variables), indent=2), "utf-8")
    logger.info(f"Wrote {path}: {json.dumps(redact_variables(variables))}")
    return path
