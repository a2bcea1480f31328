from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from cloudprovision.errors import DeploymentStateUnknown, ProvisionError, UnknownResourceFolder
from cloudprovision.orchestrator import ProvisioningOrchestrator
from cloudprovision.settings import load_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_STATE_UNKNOWN = 3


def _parse_var(raw: str) -> tuple[str, Any]:
    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"expected key=value, got {raw!r}")
    key, value = raw.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError(f"empty variable name in {raw!r}")
    # lists / booleans / numbers may be given as JSON; anything else is a plain string
    try:
        return key, json.loads(value)
    except ValueError:
        return key, value


def _collect_variables(args: argparse.Namespace) -> Dict[str, Any]:
    variables: Dict[str, Any] = {}
    if args.var_file:
        data = json.loads(Path(args.var_file).read_text("utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{args.var_file} must contain a JSON object")
        variables.update(data)
    variables.update(dict(args.var or []))
    return variables


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cloudprovision")
    parser.add_argument("--config", help="YAML settings file (default: $CLOUDPROVISION_CONFIG)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="subcommand", required=True)

    # --- deploy ---
    deploy = sub.add_parser("deploy", help="Apply a resource folder (two-phase unless APIs are already enabled)")
    deploy.add_argument("folder", help="Resource folder name (see `folders`)")
    deploy.add_argument(
        "--var",
        action="append",
        type=_parse_var,
        metavar="KEY=VALUE",
        help="Terraform variable; repeatable. JSON values (lists, booleans) are decoded",
    )
    deploy.add_argument("--var-file", help="JSON file with variables; --var entries win")
    deploy.add_argument(
        "--capabilities-enabled",
        action="store_true",
        default=None,
        help="Skip the API-enabling phase",
    )

    # --- output ---
    output = sub.add_parser("output", help="Print the last outputs of a deployed folder")
    output.add_argument("folder")

    # --- await ---
    wait = sub.add_parser("await", help="Wait for private service connect to be enabled on an instance")
    wait.add_argument("identifier", help="Cloud SQL instance id")
    wait.add_argument("--project", required=True, help="Project that owns the instance")
    wait.add_argument("--max-wait-minutes", type=float, default=None)

    # --- managed ---
    managed = sub.add_parser("managed", help="Connect a consumer VPC to an existing service attachment")
    managed.add_argument("service_attachment_uri")
    managed.add_argument("--var", action="append", type=_parse_var, metavar="KEY=VALUE")
    managed.add_argument("--var-file")

    sub.add_parser("folders", help="List known resource folders")

    return parser


async def _dispatch(args: argparse.Namespace, orchestrator: ProvisioningOrchestrator) -> int:
    if args.subcommand == "deploy":
        result = await orchestrator.deploy(args.folder, _collect_variables(args), args.capabilities_enabled)
        print(result.model_dump_json(indent=2))
        return EXIT_OK

    if args.subcommand == "output":
        record = await orchestrator.get_last_output(args.folder)
        print(record.model_dump_json(indent=2))
        return EXIT_OK

    if args.subcommand == "await":
        converged = await orchestrator.await_async_completion(args.identifier, args.project, args.max_wait_minutes)
        print(json.dumps({"identifier": args.identifier, "converged": converged}, indent=2))
        return EXIT_OK if converged else EXIT_FAILED

    if args.subcommand == "managed":
        result = await orchestrator.deploy_managed(args.service_attachment_uri, _collect_variables(args))
        print(result.model_dump_json(indent=2))
        return EXIT_OK if result.succeeded else EXIT_FAILED

    if args.subcommand == "folders":
        for name in orchestrator.registry.list():
            folder = orchestrator.registry.get(name)
            print(f"{name}\t{folder.description}")
        return EXIT_OK

    return EXIT_USAGE


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        orchestrator = ProvisioningOrchestrator(load_settings(args.config))
        return asyncio.run(_dispatch(args, orchestrator))
    except DeploymentStateUnknown as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_STATE_UNKNOWN
    except (ValueError, OSError, UnknownResourceFolder) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ProvisionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
