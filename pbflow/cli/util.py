"""Utility functions for the pbflow command-line interface.

This module provides shared helpers for template rendering, YAML handling,
executable detection, and Luigi task building used by the pbflow commands.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from pprint import pformat
from typing import Any

import luigi
import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATE_DIR = Path(__file__).parent.parent.joinpath("template")


def print_log(message: str) -> None:
    """Print a log message to both logger and stdout."""
    logger = logging.getLogger(__name__)
    logger.debug(message)
    print(f">>\t{message}", flush=True)


def render_template(
    template_name: str,
    data: dict[str, Any],
    output_path: str | os.PathLike[str] | None = None,
) -> str:
    """Render a bundled Jinja2 template.

    Args:
        template_name: Template path relative to the template directory
        data: Variables passed to the template
        output_path: Write the rendered text here when given

    Returns:
        Rendered text
    """
    text = (
        Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR), encoding="utf8"),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        .get_template(template_name)
        .render(data)
    )
    if output_path:
        output = Path(output_path).resolve()
        print_log(
            "{} a file:\t{}".format(
                ("Overwrite" if output.exists() else "Render"), output
            )
        )
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
    return text


def write_config_yml(
    path: str | os.PathLike[str], pipeline: str, container_image: str
) -> None:
    """Write a configuration YAML for a pipeline unless the file exists.

    Args:
        path: Destination path for the configuration file
        pipeline: Pipeline name written into the template
        container_image: Default container image reference
    """
    if Path(path).is_file():
        print_log(f"The file exists:\t{path}")
    else:
        print_log(f"Create a config YAML:\t{path}")
        render_template(
            "pbflow.yml.j2",
            data={"pipeline": pipeline, "container_image": container_image},
            output_path=path,
        )


def fetch_executable(cmd: str, ignore_errors: bool = False) -> str | None:
    """Return the first executable named ``cmd`` on PATH.

    Raises:
        RuntimeError: If it is missing and ``ignore_errors`` is false
    """
    for d in os.environ.get("PATH", "").split(os.pathsep):
        p = os.path.join(d, cmd)
        if d and os.access(p, os.X_OK):
            return p
    if ignore_errors:
        return None
    msg = f"command not found: {cmd}"
    raise RuntimeError(msg)


def read_yml(path: str | os.PathLike[str]) -> Any:
    logger = logging.getLogger(__name__)
    with open(str(path), encoding="utf-8") as f:
        d = yaml.load(f, Loader=yaml.FullLoader)
    logger.debug("YAML data:" + os.linesep + pformat(d))
    return d


def print_yml(data: object) -> None:
    print(yaml.dump(data, sort_keys=False))


def render_luigi_log_cfg(
    log_cfg_path: str | os.PathLike[str],
    log_dir_path: str | os.PathLike[str] | None = None,
    console_log_level: str = "WARNING",
    file_log_level: str = "DEBUG",
) -> None:
    """Render the Luigi logging configuration file.

    Args:
        log_cfg_path: Path to write the logging configuration file
        log_dir_path: Directory for log files (defaults to config directory)
        console_log_level: Log level for console output
        file_log_level: Log level for file output
    """
    log_cfg = Path(str(log_cfg_path)).resolve()
    log_dir = Path(str(log_dir_path)).resolve() if log_dir_path else log_cfg.parent
    log_txt = log_dir.joinpath(
        "luigi.{}.{}.log.txt".format(
            file_log_level, datetime.now().strftime("%Y%m%d_%H%M%S")
        )
    )
    for d in {log_cfg.parent, log_dir}:
        if not d.is_dir():
            print_log(f"Make a directory:\t{d}")
            d.mkdir(parents=True, exist_ok=True)
    render_template(
        "luigi.log.cfg.j2",
        data={
            "console_log_level": console_log_level,
            "file_log_level": file_log_level,
            "log_txt_path": str(log_txt),
        },
        output_path=log_cfg,
    )


def build_luigi_tasks(
    check_scheduling_succeeded: bool = True,
    hide_summary: bool = False,
    **kwargs: object,
) -> None:
    """Build and execute Luigi tasks with the local scheduler.

    Args:
        check_scheduling_succeeded: Assert that scheduling succeeded
        hide_summary: Skip printing execution summary
        **kwargs: Additional arguments passed to luigi.build()
    """
    r = luigi.build(local_scheduler=True, detailed_summary=True, **kwargs)
    if not hide_summary:
        print(
            os.linesep + os.linesep.join(["Execution summary:", r.summary_text, str(r)])
        )
    if check_scheduling_succeeded:
        assert r.scheduling_succeeded, r.one_line_summary


def parse_fq_id(fq_path: str | os.PathLike[str]) -> str:
    """Extract a sample ID from a FASTQ file path.

    Compression and FASTQ suffixes are stripped first, then the read pair
    indicator (``_R1``, ``.2``, ``_R1_001`` and so on).
    """
    fq_stem = Path(fq_path).name
    for _ in range(3):
        if fq_stem.endswith(("fq", "fastq")):
            fq_stem = Path(fq_stem).stem
            break
        else:
            fq_stem = Path(fq_stem).stem
    return (
        re.sub(
            r"[\._](read[12]|r[12]|[12]|r[12]_[0-9]+)$",
            "",
            fq_stem,
            flags=re.IGNORECASE,
        )
        or fq_stem
    )
