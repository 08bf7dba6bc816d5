"""
Aggregate Frame Validation

Checks run by the rollup over each polars frame before it is upserted.
A frame that fails an ERROR check aborts the stage, so a bad aggregation
never reaches the daily, window or lifetime tables.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import polars as pl
import structlog

logger = structlog.get_logger(__name__)

Check = Callable[[pl.DataFrame], "ValidationCheck"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ValidationSeverity(str, Enum):
    ERROR = "error"  # aborts the stage
    WARNING = "warning"


class ValidationStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Outcome of one check against one frame"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    failed_rows: int = 0
    total_rows: int = 0
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    status: ValidationStatus
    checks: List[ValidationCheck]
    started_at: datetime
    completed_at: datetime

    @property
    def failed(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed and c.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed and c.severity == ValidationSeverity.WARNING]

    @property
    def failure_messages(self) -> List[str]:
        return [c.message for c in self.failed]


def _outcome(
    name: str,
    severity: ValidationSeverity,
    bad_rows: int,
    frame: pl.DataFrame,
    message: str,
    **details: Any,
) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=bad_rows == 0,
        severity=severity,
        message=message if bad_rows else f"{name} ok",
        failed_rows=bad_rows,
        total_rows=frame.height,
        details=details,
    )


class FrameValidator:
    """
    Chainable suite of checks over a polars frame.

    Example:
        validator = (
            FrameValidator("daily")
            .not_null("item_id")
            .unique("item_id")
            .non_negative(["views", "owner_adds"])
        )
        validator.validate(frame)
    """

    def __init__(self, label: str, strict: bool = False):
        self.label = label
        self.strict = strict  # warnings fail the suite too
        self._checks: List[Check] = []

    def _add(self, columns: Sequence[str], name: str, severity: ValidationSeverity, body: Check) -> "FrameValidator":
        def check(frame: pl.DataFrame) -> ValidationCheck:
            missing = [c for c in columns if c not in frame.columns]
            if missing:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"{self.label}: column '{missing[0]}' not found",
                    total_rows=frame.height,
                )
            return body(frame)

        self._checks.append(check)
        return self

    def not_null(self, column: str, severity: ValidationSeverity = ValidationSeverity.ERROR) -> "FrameValidator":
        name = f"not_null_{column}"
        return self._add([column], name, severity, lambda f: _outcome(
            name, severity, f[column].null_count(), f,
            f"{self.label}: '{column}' has {f[column].null_count()} null values",
        ))

    def unique(
        self,
        key: Union[str, Sequence[str]],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FrameValidator":
        """Each key (one column or a composite) appears at most once"""
        columns = [key] if isinstance(key, str) else list(key)
        name = f"unique_{'_'.join(columns)}"

        def body(frame: pl.DataFrame) -> ValidationCheck:
            duplicates = frame.height - frame.select(columns).unique().height
            return _outcome(
                name, severity, duplicates, frame,
                f"{self.label}: {duplicates} duplicate rows for key {columns}",
                duplicate_count=duplicates,
            )

        return self._add(columns, name, severity, body)

    def non_negative(
        self,
        columns: Sequence[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FrameValidator":
        """No column in the set may hold a value below zero"""
        columns = list(columns)
        name = "non_negative_" + ("_".join(columns) if len(columns) == 1 else f"{len(columns)}_columns")

        def body(frame: pl.DataFrame) -> ValidationCheck:
            if not columns:
                return _outcome(name, severity, 0, frame, "")
            negative = {c: frame.filter(pl.col(c) < 0).height for c in columns}
            offenders = {c: n for c, n in negative.items() if n}
            bad_rows = frame.filter(pl.any_horizontal([pl.col(c) < 0 for c in columns])).height
            return _outcome(
                name, severity, bad_rows, frame,
                f"{self.label}: negative values in {', '.join(offenders)}",
                negative_counts=offenders,
            )

        return self._add(columns, name, severity, body)

    def allowed(
        self,
        column: str,
        values: Sequence[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FrameValidator":
        name = f"allowed_{column}"

        def body(frame: pl.DataFrame) -> ValidationCheck:
            invalid = frame.filter(
                pl.col(column).is_not_null() & ~pl.col(column).is_in(list(values))
            ).height
            return _outcome(
                name, severity, invalid, frame,
                f"{self.label}: '{column}' has {invalid} values outside {list(values)}",
            )

        return self._add([column], name, severity, body)

    def rule(
        self,
        name: str,
        predicate: Callable[[pl.DataFrame], bool],
        message: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "FrameValidator":
        """Frame-level predicate; a predicate that raises counts as a failure"""
        def body(frame: pl.DataFrame) -> ValidationCheck:
            try:
                ok = bool(predicate(frame))
            except Exception as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"{self.label}: rule '{name}' raised {type(e).__name__}: {e}",
                    total_rows=frame.height,
                )
            return ValidationCheck(
                name=name,
                passed=ok,
                severity=severity,
                message=f"{name} ok" if ok else f"{self.label}: {message}",
                total_rows=frame.height,
            )

        return self._add([], name, severity, body)

    def validate(self, frame: pl.DataFrame) -> ValidationResult:
        started_at = _utcnow()
        checks = [check(frame) for check in self._checks]

        for c in checks:
            if not c.passed:
                logger.warning(
                    "Aggregate check failed",
                    suite=self.label,
                    check=c.name,
                    severity=c.severity.value,
                    failed_rows=c.failed_rows,
                )

        errors = any(not c.passed and c.severity == ValidationSeverity.ERROR for c in checks)
        warnings = any(not c.passed and c.severity == ValidationSeverity.WARNING for c in checks)
        if errors or (warnings and self.strict):
            status = ValidationStatus.FAILED
        elif warnings:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.debug("Aggregate checks complete", suite=self.label, status=status.value, rows=frame.height)
        return ValidationResult(status=status, checks=checks, started_at=started_at, completed_at=_utcnow())


def create_daily_aggregate_validator(counters: Sequence[str]) -> FrameValidator:
    """One row per item for a single UTC day"""
    return (
        FrameValidator("daily")
        .not_null("item_id")
        .unique("item_id")
        .non_negative(counters)
        .non_negative(["score"], severity=ValidationSeverity.WARNING)
    )


def create_window_validator(counters: Sequence[str], timeframes: Sequence[str] = ("7d", "30d")) -> FrameValidator:
    """One row per (item, timeframe) for a single as-of date"""
    return (
        FrameValidator("windows")
        .not_null("item_id")
        .unique(["item_id", "timeframe"])
        .allowed("timeframe", timeframes)
        .non_negative([f"{c}_sum" for c in counters])
    )
