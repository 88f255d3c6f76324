# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Flowmigrate CLI - migrate n8n workflows between instances"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

# Force UTF-8 encoding for Windows
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from flowmigrate import __version__
from flowmigrate.core.compare import compare_workflows
from flowmigrate.core.config import (
    InstanceConfig,
    MigratorConfig,
    ensure_directories,
    load_config,
)
from flowmigrate.core.events import Event, EventBus, EventType
from flowmigrate.core.exceptions import MigrationError
from flowmigrate.core.graph import build_graph
from flowmigrate.core.history import UploadHistoryStore
from flowmigrate.core.id_mapping import IDMappingStore
from flowmigrate.core.loader import load_workflows, save_workflow
from flowmigrate.core.logger import get_logger, setup_logging
from flowmigrate.core.models import Workflow
from flowmigrate.core.orchestrator import (
    TransferOptions,
    TransferOrchestrator,
    TransferResult,
    fetch_snapshot,
    plan_transfer,
)
from flowmigrate.core.transport import N8nTransport
from flowmigrate.core.validator import validate as validate_workflows
from flowmigrate.core.verifier import MigrationVerifier, VerificationResult

logger = get_logger("cli")


def _bootstrap(config_file: Optional[str] = None) -> MigratorConfig:
    """Load configuration and configure logging from it"""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except MigrationError as e:
        click.echo(f"[-] Error: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level=config.observability.log_level,
        log_dir=config.paths.log_dir,
        file_output=config.observability.file_logs,
    )
    return config


def _load(directory: str) -> List[Workflow]:
    try:
        return load_workflows(directory)
    except MigrationError as e:
        click.echo(f"[-] Error: {e}", err=True)
        sys.exit(1)


def _echo_json(data: Dict[str, Any], output: Optional[str] = None) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        click.echo(f"[+] Saved to: {output}")
    else:
        click.echo(text)


def _client(instance: InstanceConfig, name: str, hint: str = "") -> N8nTransport:
    if not instance.configured:
        prefix = name.upper()
        raise MigrationError(
            f"{name.capitalize()} instance not configured "
            f"(set {prefix}_N8N_URL and {prefix}_N8N_API_KEY{hint})"
        )
    return N8nTransport(
        instance.base_url,
        instance.api_key,
        timeout_seconds=instance.timeout_seconds,
        max_retries=instance.max_retries,
        verify_ssl=instance.verify_ssl,
        name=name,
    )


def _run(coro):
    """Run a coroutine, turning MigrationError into exit status 1"""
    try:
        return asyncio.run(coro)
    except MigrationError as e:
        click.echo(f"[-] Error: {e}", err=True)
        sys.exit(1)


def _log_event(event: Event) -> None:
    if event.type == EventType.STATE_CHANGED:
        logger.info(f"State: {event.data.get('from')} -> {event.data.get('to')}")
    elif event.type == EventType.TRANSFER_END:
        logger.info(f"Transfer finished: {event.data.get('outcome')}")
    elif event.type == EventType.WORKFLOW_FAILED:
        logger.warning(f"{event.data.get('name')}: {event.data.get('error')}")
    else:
        logger.info(f"{event.type.value}: {event.data.get('name')} -> {event.data.get('newId')}")


@click.group()
@click.version_option(version=__version__)
def cli():
    """Flowmigrate - move n8n workflows between instances.

    Workflows are created on the destination, their sub-workflow
    references are rewritten to the new ids, then they are updated
    and verified.

    Commands:
        flowmigrate download   - Export workflows from the source instance
        flowmigrate validate   - Check an export for collisions
        flowmigrate graph      - Show the dependency order
        flowmigrate compare    - Diff an export against the target instance
        flowmigrate transfer   - Migrate to the target instance
        flowmigrate verify     - Re-check a finished migration
    """
    pass


@cli.command()
@click.argument("output_dir", type=click.Path(file_okay=False))
@click.option("--tag", "-t", help="Only workflows carrying this tag")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="Config file")
def download(output_dir: str, tag: Optional[str], config_file: Optional[str]):
    """Export workflows from the source instance as JSON files.

    Examples:
        flowmigrate download ./workflows
        flowmigrate download ./workflows --tag production
    """
    config = _bootstrap(config_file)
    saved = _run(_download(config, Path(output_dir), tag))

    if not saved:
        click.echo("[!] No workflows to download")
        return
    click.echo(f"[+] Downloaded {len(saved)} workflows to: {output_dir}")


async def _download(config: MigratorConfig, output_dir: Path, tag: Optional[str]) -> List[Path]:
    async with _client(config.source, "source") as source:
        workflows = await source.list({"tags": tag} if tag else None)

    if tag:
        workflows = [wf for wf in workflows if wf.has_tag(tag)]
        logger.info(f"{len(workflows)} workflows tagged {tag!r}")
    if not workflows:
        return []

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MigrationError(f"Cannot create output directory {output_dir}", cause=e)
    return [save_workflow(workflow, output_dir) for workflow in workflows]


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--strict", is_flag=True, help="Exit with status 1 if the report is not valid")
@click.option("--output", "-o", type=click.Path(), help="Write the report to a file")
def validate(directory: str, strict: bool, output: Optional[str]):
    """Report duplicate ids, duplicate names and dangling references.

    Examples:
        flowmigrate validate ./workflows
        flowmigrate validate ./workflows --strict -o report.json
    """
    _bootstrap()
    workflows = _load(directory)
    report = validate_workflows(workflows)
    _echo_json(report.to_dict(), output)

    if strict and not report.valid:
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
def graph(directory: str):
    """Show processing order, cycles and dependency statistics."""
    _bootstrap()
    workflows = _load(directory)
    try:
        workflow_graph = build_graph(workflows)
    except MigrationError as e:
        click.echo(f"[-] Error: {e}", err=True)
        sys.exit(1)

    topo = workflow_graph.topological_order()
    data = workflow_graph.to_dict()
    data["order"] = topo.to_dict()
    _echo_json(data)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", type=click.Path(), help="Write the report to a file")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="Config file")
def compare(directory: str, output: Optional[str], config_file: Optional[str]):
    """Compare exported workflows with those on the target instance, by name.

    Examples:
        flowmigrate compare ./workflows
    """
    config = _bootstrap(config_file)
    workflows = _load(directory)
    target = _run(_list_target(config))

    report = compare_workflows(workflows, target)
    _echo_json(report.to_dict(), output)


async def _list_target(config: MigratorConfig) -> List[Workflow]:
    async with _client(config.target, "target") as destination:
        return await destination.list()


@cli.command()
@click.option(
    "--source-dir",
    type=click.Path(exists=True, file_okay=False),
    help="Read workflows from exported JSON files instead of the source instance",
)
@click.option("--dry-run", "-n", is_flag=True, help="Show the plan without uploading")
@click.option("--no-skip-errors", is_flag=True, help="Stop at the first failed upload")
@click.option("--concurrency", "-c", type=int, help="Max simultaneous uploads")
@click.option("--skip-existing", is_flag=True, help="Reuse destination workflows with the same name")
@click.option("--no-resume", is_flag=True, help="Ignore mappings from earlier runs")
@click.option("--no-verify", is_flag=True, help="Skip post-migration verification")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="Config file")
def transfer(
    source_dir: Optional[str],
    dry_run: bool,
    no_skip_errors: bool,
    concurrency: Optional[int],
    skip_existing: bool,
    no_resume: bool,
    no_verify: bool,
    config_file: Optional[str],
):
    """Migrate workflows to the target instance.

    Exit status: 0 verified success, 2 partial failure, 1 failure.

    Examples:
        flowmigrate transfer --source-dir ./workflows --dry-run
        flowmigrate transfer --concurrency 10 --no-skip-errors
    """
    config = _bootstrap(config_file)
    settings = config.transfer

    try:
        options = TransferOptions(
            dry_run=dry_run,
            skip_errors=settings.skip_errors and not no_skip_errors,
            strict_validation=settings.strict_validation,
            strict_references=settings.strict_references,
            concurrency=concurrency if concurrency is not None else settings.concurrency,
            resume=settings.resume and not no_resume,
            skip_existing=settings.skip_existing or skip_existing,
            verify=settings.verify and not no_verify,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--concurrency")

    result = _run(_transfer(config, options, source_dir))
    _echo_json(result.to_dict())
    sys.exit(result.exit_code)


async def _fetch_source(config: MigratorConfig) -> List[Workflow]:
    async with _client(config.source, "source", hint=" or pass --source-dir") as source:
        return await source.list()


async def _transfer(
    config: MigratorConfig, options: TransferOptions, source_dir: Optional[str]
) -> TransferResult:
    workflows = load_workflows(source_dir) if source_dir else await _fetch_source(config)

    paths = config.paths
    mapping = IDMappingStore.load(paths.mapping_path)
    history = UploadHistoryStore.load(paths.history_path)

    if options.dry_run:
        return await plan_transfer(workflows, mapping=mapping, history=history, options=options)

    ensure_directories(config)
    event_bus = EventBus()
    event_bus.subscribe_all(_log_event)

    async with _client(config.target, "target") as destination:
        orchestrator = TransferOrchestrator(
            destination,
            mapping=mapping,
            history=history,
            event_bus=event_bus,
            mapping_path=paths.mapping_path,
            history_path=paths.history_path,
        )
        return await orchestrator.transfer(workflows, options)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--mapping",
    "-m",
    "mapping_file",
    type=click.Path(dir_okay=False),
    help="ID mapping file (default: the state directory's mapping file)",
)
@click.option("--output", "-o", type=click.Path(), help="Write the result to a file")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False), help="Config file")
def verify(
    directory: str,
    mapping_file: Optional[str],
    output: Optional[str],
    config_file: Optional[str],
):
    """Re-check a finished migration against the target instance.

    Exit status: 0 when all checks pass, 1 otherwise.

    Examples:
        flowmigrate verify ./workflows
        flowmigrate verify ./workflows --mapping ./id-mappings.json
    """
    config = _bootstrap(config_file)
    workflows = _load(directory)
    mapping_path = Path(mapping_file) if mapping_file else config.paths.mapping_path

    result = _run(_verify(config, workflows, mapping_path))
    _echo_json(result.to_dict(), output)

    if not result.passed:
        sys.exit(1)


async def _verify(
    config: MigratorConfig, workflows: List[Workflow], mapping_path: Path
) -> VerificationResult:
    if not mapping_path.is_file():
        raise MigrationError(f"Mapping file not found: {mapping_path}")
    mapping = IDMappingStore.load(mapping_path)

    async with _client(config.target, "target") as destination:
        snapshot = await fetch_snapshot(destination, workflows, mapping)
    return MigrationVerifier().verify(workflows, mapping, snapshot)


if __name__ == "__main__":
    cli()
