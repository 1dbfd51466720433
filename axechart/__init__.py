"""Stabilized live chart pipeline for AxeOS mining devices."""

from .channels import Channel
from .config import PipelineConfig
from .pipeline import ChartPipeline, RenderFrame

__all__ = ["Channel", "ChartPipeline", "PipelineConfig", "RenderFrame"]
__version__ = "0.1.0"
