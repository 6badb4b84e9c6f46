"""Domain layer: errors and schemas."""

from .errors import (
    ErrorCodes,
    ExportError,
    GenerationFailure,
    InvalidRequest,
    IOFailure,
    LoadError,
    SchemaViolation,
    Skipped,
    UnmatchedInstance,
)
from .schemas import (
    ComponentInstance,
    ConcretizedArtifact,
    Design,
    Discriminant,
    EnumValue,
    GeneratorInvocation,
    InstanceFailure,
    ManifestEntry,
    Match,
    ParamSpec,
    RunSummary,
    StaticTemplate,
    TemplateDescriptor,
)

__all__ = [
    # errors
    "ErrorCodes",
    "ExportError",
    "LoadError",
    "InvalidRequest",
    "UnmatchedInstance",
    "SchemaViolation",
    "GenerationFailure",
    "IOFailure",
    "Skipped",
    # schemas
    "ComponentInstance",
    "EnumValue",
    "Discriminant",
    "ParamSpec",
    "StaticTemplate",
    "GeneratorInvocation",
    "TemplateDescriptor",
    "Match",
    "ConcretizedArtifact",
    "Design",
    "InstanceFailure",
    "ManifestEntry",
    "RunSummary",
]
