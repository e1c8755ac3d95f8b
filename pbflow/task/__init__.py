"""Luigi task definitions for the pbflow pipelines.

This package contains the reference preparation tasks, the pbrun tasks that
dispatch GPU-accelerated tools inside a container, and the workflow tasks that
compose them per pipeline.
"""
