"""Pipeline step protocol shared by every registered pipeline."""

from .steps import FunctionStep, Payload, PipelineStep

__all__ = ["FunctionStep", "Payload", "PipelineStep"]
