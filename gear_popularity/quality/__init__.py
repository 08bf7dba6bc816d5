"""
Data Quality Module
"""
from .validators import (
    FrameValidator,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_daily_aggregate_validator,
    create_window_validator,
)

__all__ = [
    "FrameValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "create_daily_aggregate_validator",
    "create_window_validator",
]
