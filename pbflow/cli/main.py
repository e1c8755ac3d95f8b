#!/usr/bin/env python
"""
GPU-accelerated Variant-calling Pipelines with pbrun

Usage:
    pbflow init [--debug|--info] [--yml=<path>] [--pipeline=<name>]
        [--image=<str>]
    pbflow run [--debug|--info] [--yml=<path>] [--workers=<int>]
        [--skip-cleaning] [--print-subprocesses] [--dest-dir=<path>]
    pbflow wdl [--debug|--info] [--dest-dir=<path>] [--image=<str>]
        [--gpus=<int>] [<pipeline>...]
    pbflow pipelines [--debug|--info]
    pbflow -h|--help
    pbflow --version

Commands:
    init                    Create a config YAML template
    run                     Run a pipeline for the samples in a config YAML
    wdl                     Render WDL 1.2 workflow and task documents
    pipelines               List the available pipelines

Options:
    -h, --help              Print help and exit
    --version               Print version and exit
    --debug, --info         Execute a command with debug|info messages
    --yml=<path>            Specify a config YAML path [default: pbflow.yml]
    --pipeline=<name>       Specify a pipeline for the template [default: germline]
    --image=<str>           Specify a container image providing pbrun
                            [default: nvcr.io/nvidia/clara/clara-parabricks:4.3.1-1]
    --workers=<int>         Specify the maximum number of workers [default: 1]
    --skip-cleaning         Skip incomplete file removal when a task fails
    --print-subprocesses    Print STDOUT/STDERR outputs from subprocesses
    --dest-dir=<path>       Specify a destination directory path [default: .]
    --gpus=<int>            Specify the default number of GPUs [default: 1]

Args:
    <pipeline>              Pipeline name (all pipelines when omitted)
"""

import logging
import os

from docopt import docopt

from .. import __version__
from ..task.runtime import fetch_pipeline_definition, load_pipeline_definitions
from .pipeline import run_pipeline
from .util import print_yml, write_config_yml
from .wdl import render_wdl_documents


def main():
    args = docopt(__doc__, version=__version__)
    if args["--debug"]:
        log_level = "DEBUG"
    elif args["--info"]:
        log_level = "INFO"
    else:
        log_level = "WARNING"
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=log_level,
    )
    logger = logging.getLogger(__name__)
    logger.debug(f"args:{os.linesep}{args}")
    if args["init"]:
        fetch_pipeline_definition(args["--pipeline"])
        write_config_yml(
            path=args["--yml"],
            pipeline=args["--pipeline"],
            container_image=args["--image"],
        )
    elif args["run"]:
        run_pipeline(
            config_yml_path=args["--yml"],
            dest_dir_path=args["--dest-dir"],
            max_n_worker=args["--workers"],
            skip_cleaning=args["--skip-cleaning"],
            print_subprocesses=args["--print-subprocesses"],
            console_log_level=log_level,
        )
    elif args["wdl"]:
        render_wdl_documents(
            dest_dir_path=args["--dest-dir"],
            pipeline_names=args["<pipeline>"],
            container_image=args["--image"],
            num_gpus=int(args["--gpus"]),
        )
    elif args["pipelines"]:
        print_yml({
            k: {"tool": v["tool"], "input": v["input_kind"], "about": v["description"]}
            for k, v in load_pipeline_definitions().items()
        })
