"""Scoring of inspection submissions against station criteria."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from .exceptions import ErrorCode, WorkflowError
from .models import (
    BooleanCheck,
    CriterionType,
    CriterionValue,
    FailureReason,
    InspectionResult,
    Measurement,
    Observation,
    PercentageReading,
    ValidationResult,
)
from .stations import QualityCriterion, StationConfig, get_criterion

REQUIRED_ACTIONS: Mapping[str, str] = MappingProxyType(
    {
        "cellAlignment": "Realign solar cells within tolerance",
        "electricalConnection": "Re-solder electrical connections",
        "visualInspection": "Clean or replace cells with visible defects",
        "frameAlignment": "Realign frame with panel edges",
        "cornerSeals": "Reapply corner seals",
        "mountingHoles": "Redrill or reposition mounting holes",
        "boxAlignment": "Reposition junction box",
        "cableRouting": "Reroute and secure cables",
        "sealIntegrity": "Reseal junction box",
        "powerOutput": "Investigate power output deviation",
        "voltageCheck": "Investigate open circuit voltage deviation",
        "currentCheck": "Investigate short circuit current deviation",
        "efficiencyTest": "Investigate low panel efficiency",
        "notes": "Provide detailed failure description",
    }
)

_VALUE_TYPES = (BooleanCheck, Measurement, PercentageReading, Observation)
_VALUE_ADAPTER: TypeAdapter[CriterionValue] = TypeAdapter(CriterionValue)
# absorbs float error at the tolerance boundary
_EPSILON = 1e-9


def required_action_for(criterion: str) -> str:
    """Corrective action for a failed criterion."""
    return REQUIRED_ACTIONS.get(criterion, f"Review and correct {criterion} issue")


def _malformed(name: str, value: Any, reason: str) -> WorkflowError:
    return WorkflowError(
        ErrorCode.VALIDATION_FAILED,
        f"Criterion '{name}' {reason}",
        details={"criterion": name, "value": value},
    )


def coerce_criterion_value(name: str, raw: Any) -> Optional[CriterionValue]:
    """Turn a submitted value into a typed criterion value.

    ``True``/``False`` and ``"PASS"``/``"FAIL"`` are accepted for every
    criterion as the operator's verdict. Numbers are read according to the
    catalog type. ``None`` means the criterion was not recorded.

    Raises:
        WorkflowError: ``VALIDATION_FAILED`` if the value cannot be read.
    """
    if raw is None:
        return None
    if isinstance(raw, _VALUE_TYPES):
        return raw

    criterion = get_criterion(name)
    ctype = criterion.type if criterion else None

    if isinstance(raw, bool):
        return BooleanCheck(passed=raw)
    if isinstance(raw, str):
        verdict = raw.strip().upper()
        if verdict in (InspectionResult.PASS.value, InspectionResult.FAIL.value):
            return BooleanCheck(passed=verdict == InspectionResult.PASS.value)
        if ctype in (None, CriterionType.TEXT):
            return Observation(value=raw)
        raise _malformed(name, raw, "expects a PASS/FAIL verdict or a reading")
    if isinstance(raw, (int, float)):
        if ctype == CriterionType.NUMBER:
            return Measurement(measured=float(raw), nominal=criterion.nominal)
        if ctype == CriterionType.PERCENTAGE:
            return PercentageReading(value=float(raw))
        raise _malformed(name, raw, "expects a PASS/FAIL verdict")
    if isinstance(raw, dict):
        data = dict(raw)
        if "kind" not in data and ctype is not None:
            data["kind"] = ctype.value
        try:
            return _VALUE_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise _malformed(name, raw, f"is not a valid reading: {exc.errors()}") from exc
    raise _malformed(name, raw, f"has unsupported type {type(raw).__name__}")


def _parse_result(declared_result: InspectionResult | str) -> InspectionResult:
    if isinstance(declared_result, InspectionResult):
        return declared_result
    try:
        return InspectionResult(str(declared_result).strip().upper())
    except ValueError as exc:
        raise WorkflowError(
            ErrorCode.VALIDATION_FAILED,
            f"Unknown inspection result: {declared_result}",
            details={"result": str(declared_result)},
        ) from exc


def unscorable_reason(criterion: QualityCriterion, value: CriterionValue) -> Optional[str]:
    """Why ``value`` cannot be judged against ``criterion``, or ``None``."""
    if isinstance(value, Measurement):
        if value.nominal is None and criterion.nominal is None:
            return "has no nominal value to be scored against"
    elif isinstance(value, PercentageReading):
        if criterion.minimum is None:
            return "has no minimum to be scored against"
    elif not isinstance(value, BooleanCheck):
        return "cannot be scored"
    return None


def evaluate_criterion(criterion: QualityCriterion, value: CriterionValue) -> bool:
    """Return whether ``value`` satisfies ``criterion``.

    Raises:
        WorkflowError: ``VALIDATION_FAILED`` if the value cannot be judged.
    """
    reason = unscorable_reason(criterion, value)
    if reason is not None:
        raise _malformed(criterion.name, value.model_dump(), reason)
    if isinstance(value, BooleanCheck):
        return value.passed
    if isinstance(value, Measurement):
        nominal = value.nominal if value.nominal is not None else criterion.nominal
        tolerance = criterion.tolerance or 0.0
        return abs(value.measured - nominal) <= tolerance * abs(nominal) + _EPSILON
    tolerance = criterion.tolerance or 0.0
    return value.value >= criterion.minimum - tolerance - _EPSILON


def validate_inspection_criteria(
    config: StationConfig,
    submitted: Mapping[str, Any],
    declared_result: InspectionResult | str,
    notes: Optional[str] = None,
) -> ValidationResult:
    """Score ``submitted`` criteria against a station configuration.

    Only required criteria count towards the score. Optional criteria that
    were submitted are returned typed in ``criteria`` so they can be
    recorded on the panel.

    Raises:
        WorkflowError: ``VALIDATION_FAILED`` for a FAIL without notes at a
            station that requires them, or for unreadable values.
    """
    declared = _parse_result(declared_result)

    rules = config.criteria
    if notes is None:
        raw_notes = submitted.get("notes")
        notes = raw_notes if isinstance(raw_notes, str) else None
    if declared == InspectionResult.FAIL and rules.notes_required:
        if not notes or not notes.strip():
            raise WorkflowError(
                ErrorCode.VALIDATION_FAILED,
                f"Notes are required for FAIL results at {config.station_id.value}",
                details={"station_id": config.station_id.value, "criterion": "notes"},
            )

    typed: Dict[str, CriterionValue] = {}
    for name in rules.required + rules.optional:
        value = coerce_criterion_value(name, submitted.get(name))
        if value is not None:
            typed[name] = value

    passed = 0
    failures: List[FailureReason] = []
    for name in rules.required:
        value = typed.get(name)
        if value is None:
            failures.append(
                FailureReason(
                    criterion=name,
                    reason=f"Required criterion '{name}' was not recorded",
                )
            )
            continue
        criterion = get_criterion(name) or QualityCriterion(name=name, label=name)
        unscorable = unscorable_reason(criterion, value)
        if unscorable is not None:
            failures.append(
                FailureReason(
                    criterion=name,
                    reason=f"Required criterion '{name}' {unscorable}",
                    value=submitted.get(name),
                )
            )
        elif evaluate_criterion(criterion, value):
            passed += 1
        else:
            failures.append(
                FailureReason(
                    criterion=name,
                    reason=f"Required criterion '{name}' failed",
                    value=submitted.get(name),
                )
            )

    total = len(rules.required)
    if total == 0:
        quality_score = 100.0
        is_valid = True
    else:
        quality_score = round(passed / total * 100, 2)
        if declared == InspectionResult.PASS:
            is_valid = passed == total and quality_score / 100 >= rules.pass_threshold
        else:
            is_valid = True

    return ValidationResult(
        is_valid=is_valid,
        quality_score=quality_score,
        passed_criteria=passed,
        total_criteria=total,
        failure_reasons=failures,
        required_actions=[required_action_for(f.criterion) for f in failures],
        criteria=typed,
    )
