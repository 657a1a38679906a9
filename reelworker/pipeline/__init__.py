"""
Video Generation Pipeline

Product image → narrated video:
  Creative stages — Analysis → Image prompt → Reference image → Video prompt
  Segment loop    — Veo generation → last-frame extraction → continuation prompt
  Assembly        — ffmpeg cut or crossfade into one final video

The orchestrator and routes import the service clients, which in turn import
this package; import them from their modules directly.
"""

from .config import PipelineSettings
from .errors import PipelineError, ValidationError
from .models import AssemblyMode, PipelineResult, PipelineStage, VideoCreationRequest

__all__ = [
    "PipelineSettings",
    "PipelineError",
    "ValidationError",
    "AssemblyMode",
    "PipelineResult",
    "PipelineStage",
    "VideoCreationRequest",
]
