"""Pipeline registry and resource sizing for pbrun tasks.

This module loads the pipeline definitions shipped in ``static/pipelines.yml``
and evaluates their resource sizing rules. The disk sizing mirrors the WDL
expression rendered into task documents:
``ceil(sum(size(input, "GB")) * disk_scale) + disk_padding_gb``.
"""

import logging
import os
from collections.abc import Iterable, Mapping
from math import ceil
from pathlib import Path
from typing import Any

import yaml
from psutil import disk_usage

# WDL size(..., "GB") uses decimal units
BYTES_PER_GB = 1000**3

PIPELINES_YML_PATH = Path(__file__).parent.parent.joinpath("static/pipelines.yml")


def load_pipeline_definitions() -> dict[str, dict[str, Any]]:
    """Load all pipeline definitions from the bundled registry.

    Returns:
        Mapping of pipeline names to their definitions
    """
    with PIPELINES_YML_PATH.open(encoding="utf-8") as f:
        return yaml.load(f, Loader=yaml.FullLoader)


def fetch_pipeline_definition(name: str) -> dict[str, Any]:
    """Return the definition of a single pipeline.

    Args:
        name: Pipeline name (e.g. ``germline``)

    Returns:
        Pipeline definition dictionary

    Raises:
        ValueError: If the pipeline is not registered
    """
    definitions = load_pipeline_definitions()
    if name not in definitions:
        msg = "unknown pipeline: {} (choose from {})".format(
            name, ", ".join(definitions)
        )
        raise ValueError(msg)
    return definitions[name]


def size_gb(paths: Iterable[str | os.PathLike[str]]) -> float:
    """Sum the sizes of existing files in GB.

    Missing paths count as zero, as ``size()`` does for undefined optional
    files in WDL.
    """
    return (
        sum(Path(str(p)).stat().st_size for p in paths if p and Path(str(p)).is_file())
        / BYTES_PER_GB
    )


def compute_disk_gb(
    input_paths: Iterable[str | os.PathLike[str]],
    disk_scale: float = 2.0,
    disk_padding_gb: int = 50,
) -> int:
    """Compute the scratch disk size required by a pbrun task.

    Args:
        input_paths: Input files whose sizes drive the estimate
        disk_scale: Multiplier applied to the total input size
        disk_padding_gb: Fixed padding added after scaling

    Returns:
        Required disk size in GB
    """
    return ceil(size_gb(input_paths) * disk_scale) + int(disk_padding_gb)


def compute_runtime(
    sizing: Mapping[str, Any],
    input_paths: Iterable[str | os.PathLike[str]],
    num_gpus: int = 1,
) -> dict[str, int]:
    """Evaluate the runtime requirements of a pbrun task.

    Args:
        sizing: ``sizing`` section of a pipeline definition
        input_paths: Input files whose sizes drive the disk estimate
        num_gpus: Number of GPUs requested

    Returns:
        Dictionary with ``cpu``, ``memory_gb``, ``gpu`` and ``disk_gb``
    """
    return {
        "cpu": int(sizing["cpu"]),
        "memory_gb": int(sizing["memory_gb"]),
        "gpu": int(num_gpus),
        "disk_gb": compute_disk_gb(
            input_paths=input_paths,
            disk_scale=float(sizing["disk_scale"]),
            disk_padding_gb=int(sizing["disk_padding_gb"]),
        ),
    }


def check_disk_space(dir_path: str | os.PathLike[str], required_gb: int) -> None:
    """Ensure a directory has enough free space for a task.

    Args:
        dir_path: Directory to check (its nearest existing ancestor is used)
        required_gb: Required free space in GB

    Raises:
        OSError: If the free space is smaller than required
    """
    logger = logging.getLogger(__name__)
    d = Path(str(dir_path)).resolve()
    while not d.exists():
        d = d.parent
    free_gb = disk_usage(str(d)).free / BYTES_PER_GB
    logger.debug("free disk space:\t%.1f GB (%s)", free_gb, d)
    if free_gb < required_gb:
        msg = f"insufficient disk space in {d}: {free_gb:.1f} GB < {required_gb} GB"
        raise OSError(msg)
