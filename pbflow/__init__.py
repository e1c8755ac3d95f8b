"""GPU-accelerated variant-calling pipelines built on the pbrun CLI.

pbflow declares alignment and variant-calling pipelines that invoke pbrun inside
a fixed container image. The same pipeline definitions are rendered as WDL 1.2
workflow and task documents for an external execution engine, or executed
locally as Luigi tasks.
"""

from importlib.metadata import version

__version__ = version(__package__) if __package__ else None

__all__ = ["__version__"]
