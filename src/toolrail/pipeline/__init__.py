"""Stage composition."""

from .compose import Next, Pipeline, Runner, Stage, compose, stage_name

__all__ = ["Next", "Pipeline", "Runner", "Stage", "compose", "stage_name"]
