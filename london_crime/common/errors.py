"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class ContractError(PipelineError):
    """Raised when strict output contracts are broken."""

    error_code = "CONTRACT_ERROR"


class StageError(PipelineError):
    """Raised for stage failures that abort a single partition."""

    error_code = "STAGE_ERROR"


class BoundaryUnavailable(PipelineError):
    """Raised when no boundary data can be loaded. Fatal for the whole run."""

    error_code = "BOUNDARY_UNAVAILABLE"


class FetchFailure(StageError):
    """Raised when every coarse area failed for a partition."""

    error_code = "FETCH_FAILED"


class ValidationFailure(ContractError):
    """Raised when a partition breaks the persisted record contract."""

    error_code = "VALIDATION_FAILED"


class PartitionNotFound(PipelineError):
    """Raised when reading a partition that is not cached."""

    error_code = "PARTITION_NOT_FOUND"


class CacheError(PipelineError):
    """Raised for cache writes that would break partition immutability."""

    error_code = "CACHE_ERROR"
