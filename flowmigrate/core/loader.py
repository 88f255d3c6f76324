# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Read and write exported workflow JSON files"""

import json
import logging
import re
from pathlib import Path
from typing import List, Union

from .exceptions import MigrationError
from .models import Workflow

logger = logging.getLogger("flowmigrate.loader")

_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


def load_workflow_file(path: Union[str, Path]) -> List[Workflow]:
    """Parse one export file holding a single workflow or a list of them"""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise MigrationError(f"Cannot read workflow file {path}", cause=e)

    items = data if isinstance(data, list) else [data]
    workflows = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise MigrationError(
                f"Unexpected entry in {path}",
                details={"index": index, "type": type(item).__name__},
            )
        try:
            workflows.append(Workflow.from_dict(item))
        except ValueError as e:
            raise MigrationError(
                f"Invalid workflow in {path}", details={"index": index}, cause=e
            )
    return workflows


def load_workflows(directory: Union[str, Path]) -> List[Workflow]:
    """Load every ``*.json`` export in ``directory``, ordered by file name"""
    directory = Path(directory)
    if not directory.is_dir():
        raise MigrationError(f"Workflow directory not found: {directory}")

    workflows: List[Workflow] = []
    for path in sorted(directory.glob("*.json")):
        workflows.extend(load_workflow_file(path))

    logger.info(f"Loaded {len(workflows)} workflows from {directory}")
    return workflows


def workflow_filename(workflow: Workflow) -> str:
    """``<sanitized name>-<id>.json``, unique per id"""
    safe_name = _UNSAFE_CHARS.sub("_", workflow.name).strip("_") or "workflow"
    return f"{safe_name}-{workflow.id}.json"


def save_workflow(workflow: Workflow, directory: Union[str, Path]) -> Path:
    """Write one workflow as an export file that ``load_workflows`` reads back"""
    path = Path(directory) / workflow_filename(workflow)
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(workflow.to_dict(), f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as e:
        raise MigrationError(f"Cannot write workflow file {path}", cause=e)

    logger.debug(f"Saved {workflow.name!r} to {path}")
    return path
