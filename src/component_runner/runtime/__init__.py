"""
Pipeline orchestration.

ComponentRunner sequences the core stages and owns the single current
PipelineState.
"""

from .pipeline import ComponentRunner, PipelineState, Stage, Status

__all__ = ["ComponentRunner", "PipelineState", "Stage", "Status"]
