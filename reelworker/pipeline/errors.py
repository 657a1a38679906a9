"""
Exception taxonomy for the video generation pipeline.

ValidationError is raised to the caller before any collaborator is touched.
Everything else is caught at the orchestrator boundary and folded into a
failed PipelineResult.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class ValidationError(PipelineError):
    """Malformed or out-of-range request."""


class GenerationError(PipelineError):
    """An external generation call did not produce a usable result."""


class GenerationTimeout(GenerationError):
    """A long-running generation job never reported completion."""


class GenerationFailed(GenerationError):
    """A generation job finished (or was rejected) without a usable payload."""


class FrameExtractionFailed(PipelineError):
    """Decode, seek or encode failed while extracting a continuity frame."""


class AssemblyFailed(PipelineError):
    """Final concatenation could not be produced."""


class FFmpegProcessingFailed(AssemblyFailed):
    """The filter graph or encoder exited with an error."""


class StorageError(PipelineError):
    """Upload or download against the object store failed."""


class UploadFailed(StorageError):
    pass


class MetadataPersistenceError(PipelineError):
    """Run record could not be written. Never surfaced to callers."""
