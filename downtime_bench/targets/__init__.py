from downtime_bench.targets.registry import (
    ConfigurationError,
    Target,
    TargetKind,
    load_targets,
    validate_targets,
)

__all__ = [
    "ConfigurationError",
    "Target",
    "TargetKind",
    "load_targets",
    "validate_targets",
]
