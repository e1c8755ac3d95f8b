"""Pipeline execution and configuration management for pbflow.

This module reads and validates the config YAML, allocates CPU and memory
across Luigi workers, and builds the workflow task of the configured pipeline
for every run listed in the config.
"""

import logging
import os
import re
import shutil
from collections.abc import Mapping, Sequence
from math import floor
from pathlib import Path
from pprint import pformat
from typing import Any

from psutil import cpu_count, virtual_memory

from ..task.controller import WORKFLOW_TASKS, PrintEnvVersions
from ..task.pbrun import DEFAULT_CONTAINER_IMAGE
from ..task.runtime import load_pipeline_definitions
from .constants import CONTAINER_RUNTIMES, N_FQ_FILES, RUN_INPUT_KEYS
from .util import (
    build_luigi_tasks,
    fetch_executable,
    parse_fq_id,
    print_log,
    print_yml,
    read_yml,
    render_luigi_log_cfg,
)

DEFAULT_OPTIONS = {"gvcf": False, "run_bqsr": True, "low_memory": False}


def run_pipeline(
    config_yml_path: str | os.PathLike[str],
    dest_dir_path: str | os.PathLike[str] = ".",
    max_n_worker: int | str | None = None,
    skip_cleaning: bool = False,
    print_subprocesses: bool = False,
    console_log_level: str = "WARNING",
    file_log_level: str = "DEBUG",
) -> None:
    """Run the configured pipeline for every sample in a config YAML.

    Args:
        config_yml_path: Path to the YAML configuration file
        dest_dir_path: Output directory path
        max_n_worker: Maximum number of parallel Luigi workers (default: 1)
        skip_cleaning: Keep incomplete outputs and temporary directories
        print_subprocesses: Print subprocess STDOUT/STDERR
        console_log_level: Console logging level
        file_log_level: File logging level
    """
    logger = logging.getLogger(__name__)
    logger.info("config_yml_path:\t%s", config_yml_path)
    config = _read_config_yml(path=config_yml_path)
    pipeline_name = config["pipeline"]
    definition = load_pipeline_definitions()[pipeline_name]
    input_kind = definition["input_kind"]
    runs = config["runs"]
    dest_dir = Path(dest_dir_path).resolve()
    log_dir = dest_dir.joinpath("log")
    logger.info("dest_dir:\t%s", dest_dir)

    container = {
        "image": DEFAULT_CONTAINER_IMAGE,
        "runtime": "docker",
        "num_gpus": 1,
        **(config.get("container") or {}),
    }
    options = {**DEFAULT_OPTIONS, **(config.get("options") or {})}
    logger.debug("container:\t%s", container)
    logger.debug("options:\t%s", options)

    command_dict = {
        **(
            {"docker": fetch_executable("docker")}
            if container["runtime"] == "docker"
            else {"pbrun": fetch_executable("pbrun")}
        ),
        **{
            c: (fetch_executable(c, ignore_errors=True) or c)
            for c in ["samtools", "bwa", "bgzip", "tabix"]
        },
    }
    logger.debug("command_dict:%s%s", os.linesep, pformat(command_dict))

    n_cpu = cpu_count()
    n_worker = min(int(max_n_worker or 1), len(runs))
    memory_mb = virtual_memory().total / 1024 / 1024
    n_cpu_per_worker = max(
        1, min(int(definition["sizing"]["cpu"]), floor(n_cpu / n_worker))
    )
    memory_mb_per_worker = min(
        definition["sizing"]["memory_gb"] * 1024, memory_mb / n_worker
    )

    sh_config = {
        "log_dir_path": str(log_dir),
        "remove_if_failed": (not skip_cleaning),
        "quiet": (not print_subprocesses),
        "executable": fetch_executable("bash"),
    }
    logger.debug("sh_config:%s%s", os.linesep, pformat(sh_config))

    resources = config["resources"]
    cf_dict = {
        "fa_path": _resolve_file_path(resources["reference_fa"]),
        "interval_file_path": (
            _resolve_file_path(resources["interval_file"])
            if resources.get("interval_file")
            else ""
        ),
        "known_sites_vcf_paths": [
            _resolve_file_path(p) for p in (resources.get("known_sites_vcf") or [])
        ],
        "container_image": container["image"],
        "container_runtime": container["runtime"],
        "num_gpus": int(container["num_gpus"]),
        "docker": command_dict.get("docker", "docker"),
        "pbrun": command_dict.get("pbrun", "pbrun"),
        **{c: command_dict[c] for c in ["samtools", "bwa", "bgzip", "tabix"]},
        **options,
    }
    logger.debug("cf_dict:%s%s", os.linesep, pformat(cf_dict))

    sample_dict_list = [
        {**_determine_input_samples(run_dict=r, input_kind=input_kind), "priority": p}
        for p, r in zip(
            [i * 1000 for i in range(1, (len(runs) + 1))[::-1]], runs, strict=True
        )
    ]
    logger.debug("sample_dict_list:%s%s", os.linesep, pformat(sample_dict_list))
    _check_unique_sample_names(sample_dict_list)

    pipeline_dir = dest_dir.joinpath(pipeline_name)
    print_log(f"Run the {pipeline_name} pipeline:\t{pipeline_dir}")
    print_yml([
        {
            "config": [
                {"pipeline": pipeline_name},
                {"container": container},
                {"options": options},
                {"n_worker": n_worker},
                {"n_cpu_per_worker": n_cpu_per_worker},
                {"memory_mb_per_worker": memory_mb_per_worker},
            ]
        },
        {
            "input": [
                {"n_sample": len(runs)},
                {"samples": [d["sample_name"] for d in sample_dict_list]},
            ]
        },
    ])
    log_cfg_path = str(log_dir.joinpath("luigi.log.cfg"))
    render_luigi_log_cfg(
        log_cfg_path=log_cfg_path,
        console_log_level=console_log_level,
        file_log_level=file_log_level,
    )

    build_luigi_tasks(
        tasks=[
            PrintEnvVersions(
                command_paths=[
                    v for v in command_dict.values() if Path(v).is_absolute()
                ],
                container_image=container["image"],
                container_runtime=container["runtime"],
                docker=cf_dict["docker"],
                sh_config=sh_config,
            )
        ],
        workers=1,
        log_level=console_log_level,
        logging_conf_file=log_cfg_path,
        hide_summary=True,
    )
    workflow_class = WORKFLOW_TASKS[pipeline_name]
    build_luigi_tasks(
        tasks=[
            workflow_class(
                **_select_task_kwargs(
                    workflow_class,
                    {
                        **cf_dict,
                        **d,
                        "dest_dir_path": str(pipeline_dir.joinpath(d["sample_name"])),
                        "n_cpu": n_cpu_per_worker,
                        "memory_mb": memory_mb_per_worker,
                        "sh_config": sh_config,
                    },
                )
            )
            for d in sample_dict_list
        ],
        workers=n_worker,
        log_level=console_log_level,
        logging_conf_file=log_cfg_path,
    )
    if not skip_cleaning and pipeline_dir.is_dir():
        for t in pipeline_dir.glob("*/.*.pbrun.tmp"):
            print_log(f"Remove a temporary directory:\t{t}")
            shutil.rmtree(str(t))


def _select_task_kwargs(
    task_class: type, kwargs: Mapping[str, Any]
) -> dict[str, Any]:
    """Keep only the keyword arguments that are parameters of a Luigi task."""
    param_names = set(task_class.get_param_names(include_significant=True))
    return {k: v for k, v in kwargs.items() if k in param_names}


def _read_config_yml(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read and validate the YAML configuration file."""
    config = read_yml(path=Path(path).resolve())
    validate_config(config)
    return config


def validate_config(config: object) -> None:
    """Validate the structure of a pbflow config.

    Args:
        config: Parsed config YAML

    Raises:
        ValueError: If a value is missing or invalid
        TypeError: If a value has an unexpected type
    """
    if not (isinstance(config, dict) and config.get("resources")):
        msg = f"Invalid config structure: {config}"
        raise ValueError(msg)
    definitions = load_pipeline_definitions()
    pipeline_name = config.get("pipeline")
    if pipeline_name not in definitions:
        msg = "Invalid pipeline: {} (choose from {})".format(
            pipeline_name, ", ".join(definitions)
        )
        raise ValueError(msg)
    _validate_resources(config["resources"])
    _validate_container(config.get("container"))
    options = config.get("options") or {}
    if not isinstance(options, dict):
        msg = f"Expected dict for options, got {type(options)}"
        raise TypeError(msg)
    for k, v in options.items():
        if k not in DEFAULT_OPTIONS:
            msg = f"Unknown option: {k}"
            raise ValueError(msg)
        if not isinstance(v, bool):
            msg = f"Expected bool for option {k}, got {type(v)}"
            raise TypeError(msg)
    if not config.get("runs"):
        msg = f"Missing 'runs' in config: {config}"
        raise ValueError(msg)
    if not isinstance(config["runs"], list):
        msg = f"Expected list for runs, got {type(config['runs'])}"
        raise TypeError(msg)
    input_kind = definitions[pipeline_name]["input_kind"]
    for r in config["runs"]:
        _validate_run(run_dict=r, input_kind=input_kind)


def _validate_resources(resources: object) -> None:
    if not isinstance(resources, dict):
        msg = f"Invalid resources structure: {resources}"
        raise TypeError(msg)
    fa = resources.get("reference_fa")
    if not isinstance(fa, str):
        msg = f"Expected string for reference_fa, got {type(fa)}"
        raise TypeError(msg)
    if fa.endswith((".gz", ".bz2")):
        msg = f"reference_fa must be uncompressed: {fa}"
        raise ValueError(msg)
    vcfs = resources.get("known_sites_vcf")
    if vcfs is not None:
        if not isinstance(vcfs, list):
            msg = f"Expected list for known_sites_vcf, got {type(vcfs)}"
            raise TypeError(msg)
        if not _has_unique_elements(vcfs):
            msg = "Duplicate elements found in known_sites_vcf"
            raise ValueError(msg)
        for s in vcfs:
            if not isinstance(s, str):
                msg = f"Expected string in known_sites_vcf, got {type(s)}"
                raise TypeError(msg)
    interval_file = resources.get("interval_file")
    if interval_file is not None and not isinstance(interval_file, str):
        msg = f"Expected string for interval_file, got {type(interval_file)}"
        raise TypeError(msg)


def _validate_container(container: object) -> None:
    if container is None:
        return
    elif not isinstance(container, dict):
        msg = f"Expected dict for container, got {type(container)}"
        raise TypeError(msg)
    runtime = container.get("runtime", "docker")
    if runtime not in CONTAINER_RUNTIMES:
        msg = "Invalid container runtime: {} (choose from {})".format(
            runtime, ", ".join(CONTAINER_RUNTIMES)
        )
        raise ValueError(msg)
    num_gpus = container.get("num_gpus", 1)
    if isinstance(num_gpus, bool) or not isinstance(num_gpus, int):
        msg = f"Expected int for num_gpus, got {type(num_gpus)}"
        raise TypeError(msg)
    if num_gpus < 1:
        msg = f"num_gpus must be positive: {num_gpus}"
        raise ValueError(msg)
    if not isinstance(container.get("image", DEFAULT_CONTAINER_IMAGE), str):
        msg = f"Expected string for image: {container}"
        raise TypeError(msg)


def _validate_run(run_dict: object, input_kind: str) -> None:
    if not isinstance(run_dict, dict):
        msg = f"Expected dict for run, got {type(run_dict)}: {run_dict}"
        raise TypeError(msg)
    for k in RUN_INPUT_KEYS[input_kind]:
        if not run_dict.get(k):
            msg = f"Missing '{k}' in run: {run_dict}"
            raise ValueError(msg)
    if input_kind == "fastq":
        fqs = run_dict["fq"]
        if not isinstance(fqs, list):
            msg = f"Expected list for fq, got {type(fqs)}: {run_dict}"
            raise TypeError(msg)
        if len(fqs) != N_FQ_FILES:
            msg = f"Expected {N_FQ_FILES} fq files (read 1 and read 2): {run_dict}"
            raise ValueError(msg)
        if not _has_unique_elements(fqs):
            msg = f"Duplicate fq files found: {run_dict}"
            raise ValueError(msg)
        for p in fqs:
            if not str(p).endswith(".gz"):
                msg = f"fq file must be gzip-compressed: {p}"
                raise ValueError(msg)
        if run_dict.get("read_group"):
            if not isinstance(run_dict["read_group"], dict):
                msg = f"Expected dict for read_group: {run_dict}"
                raise TypeError(msg)
            for k, v in run_dict["read_group"].items():
                if not re.fullmatch(r"[A-Z]{2}", k):
                    msg = (
                        f"Invalid read group key format "
                        f"(expected 2 uppercase letters): {k}"
                    )
                    raise ValueError(msg)
                if not isinstance(v, str):
                    msg = f"Expected string value for read group key {k}, got {type(v)}"
                    raise TypeError(msg)
    else:
        for k in ["bam", "tumor_bam", "normal_bam", "recal_file"]:
            v = run_dict.get(k)
            if v is not None and not isinstance(v, str):
                msg = f"Expected string for {k}, got {type(v)}: {run_dict}"
                raise TypeError(msg)


def _check_unique_sample_names(sample_dict_list: Sequence[Mapping[str, Any]]) -> None:
    names = [d["sample_name"] for d in sample_dict_list]
    if not _has_unique_elements(names):
        msg = f"Duplicate sample names found: {names}"
        raise ValueError(msg)


def _has_unique_elements(elements: Sequence[object]) -> bool:
    return len(set(elements)) == len(tuple(elements))


def _resolve_file_path(path: str | os.PathLike[str]) -> str:
    """Resolve a file path.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    p = Path(path).resolve()
    if not p.is_file():
        msg = f"file not found: {p}"
        raise FileNotFoundError(msg)
    return str(p)


def _determine_input_samples(
    run_dict: Mapping[str, Any], input_kind: str
) -> dict[str, Any]:
    """Translate a run entry into workflow task parameters.

    Args:
        run_dict: Run entry of the config YAML
        input_kind: ``fastq``, ``bam`` or ``somatic``

    Returns:
        Dictionary of sample-specific workflow parameters
    """
    if input_kind == "fastq":
        g = run_dict.get("read_group") or {}
        return {
            "fq_paths": [_resolve_file_path(p) for p in run_dict["fq"]],
            "read_group": g,
            "sample_name": (g.get("SM") or parse_fq_id(fq_path=run_dict["fq"][0])),
        }
    elif input_kind == "bam":
        return {
            "input_bam_path": _resolve_file_path(run_dict["bam"]),
            "recal_file_path": (
                _resolve_file_path(run_dict["recal_file"])
                if run_dict.get("recal_file")
                else ""
            ),
            "sample_name": (run_dict.get("sample_name") or Path(run_dict["bam"]).stem),
        }
    else:
        return {
            "tumor_bam_path": _resolve_file_path(run_dict["tumor_bam"]),
            "normal_bam_path": (
                _resolve_file_path(run_dict["normal_bam"])
                if run_dict.get("normal_bam")
                else ""
            ),
            "sample_name": (
                run_dict.get("tumor_name") or Path(run_dict["tumor_bam"]).stem
            ),
            "normal_name": run_dict.get("normal_name") or "normal",
        }
