"""WDL document rendering for pbflow pipelines.

Every registered pipeline is rendered as a WDL 1.2 task document
(``tasks/<pipeline>.wdl``) and a workflow document
(``workflows/<pipeline>.wdl``) that imports it.
"""

import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .. import __version__
from ..task.pbrun import DEFAULT_CONTAINER_IMAGE
from ..task.runtime import load_pipeline_definitions
from .util import print_log, render_template


def to_camel_case(name: str) -> str:
    return "".join(s.capitalize() for s in name.split("_"))


def build_workflow_inputs(pipeline: dict[str, Any]) -> list[dict[str, Any]]:
    """List the workflow-level inputs of a pipeline.

    Task inputs computed by a workflow branch are not exposed as inputs; the
    pipeline's workflow-only inputs are added instead.
    """
    branch_names = {b["name"] for b in pipeline.get("branches") or []}
    return [
        *[i for i in pipeline["inputs"] if i["name"] not in branch_names],
        *(pipeline.get("workflow_inputs") or []),
    ]


def render_wdl_documents(
    dest_dir_path: str | os.PathLike[str] = ".",
    pipeline_names: Sequence[str] | None = None,
    container_image: str = DEFAULT_CONTAINER_IMAGE,
    num_gpus: int = 1,
) -> list[Path]:
    """Render WDL task and workflow documents.

    Args:
        dest_dir_path: Directory receiving ``tasks/`` and ``workflows/``
        pipeline_names: Pipelines to render (all when empty)
        container_image: Default container image written into the documents
        num_gpus: Default number of GPUs written into the documents

    Returns:
        Paths of the written documents

    Raises:
        ValueError: If an unknown pipeline is requested or ``num_gpus`` is
            not positive
    """
    logger = logging.getLogger(__name__)
    definitions = load_pipeline_definitions()
    names = list(pipeline_names or definitions)
    unknown = [n for n in names if n not in definitions]
    if unknown:
        msg = "unknown pipeline: {} (choose from {})".format(
            ", ".join(unknown), ", ".join(definitions)
        )
        raise ValueError(msg)
    if int(num_gpus) < 1:
        msg = f"num_gpus must be positive: {num_gpus}"
        raise ValueError(msg)
    dest_dir = Path(dest_dir_path).resolve()
    print_log(f"Render WDL documents:\t{dest_dir}")
    written = []
    for n in names:
        pipeline = definitions[n]
        data = {
            "name": n,
            "pipeline": pipeline,
            "task_name": to_camel_case(n),
            "workflow_name": f"{to_camel_case(n)}Workflow",
            "task_import": f"../tasks/{n}.wdl",
            "workflow_inputs": build_workflow_inputs(pipeline),
            "container_image": container_image,
            "num_gpus": int(num_gpus),
            "version": __version__,
        }
        logger.debug("render %s with %s", n, data)
        for template_name, output_path in [
            (f"wdl/tasks/{n}.wdl.j2", dest_dir.joinpath(f"tasks/{n}.wdl")),
            ("wdl/workflow.wdl.j2", dest_dir.joinpath(f"workflows/{n}.wdl")),
        ]:
            render_template(template_name, data=data, output_path=output_path)
            written.append(output_path)
    return written
