"""stackforge dependency resolver -- install ordering with conflict and cycle detection."""

from stackforge.resolver.resolver import (
    ConflictKind,
    ConflictRecord,
    DependencyResolver,
    ResolutionResult,
    print_resolution_report,
)

__all__ = [
    "ConflictKind",
    "ConflictRecord",
    "DependencyResolver",
    "ResolutionResult",
    "print_resolution_report",
]
