import pytest

from panelflow import ErrorCode, InspectionResult, State, StationId, WorkflowError
from panelflow.models import BooleanCheck, Measurement, Observation, PercentageReading
from panelflow.stations import STATION_CONFIGS, StationConfig, StationCriteria, get_criterion
from panelflow.validator import (
    coerce_criterion_value,
    evaluate_criterion,
    required_action_for,
    validate_inspection_criteria,
)

STATION_1 = STATION_CONFIGS[StationId.STATION_1]
STATION_4 = STATION_CONFIGS[StationId.STATION_4]


def test_all_required_passing_scores_100():
    result = validate_inspection_criteria(
        STATION_1,
        {"cellAlignment": True, "electricalConnection": "PASS", "visualInspection": True},
        "PASS",
    )
    assert result.is_valid
    assert result.quality_score == 100
    assert result.passed_criteria == 3
    assert result.total_criteria == 3
    assert result.failure_reasons == []


def test_missing_required_criterion_fails():
    result = validate_inspection_criteria(
        STATION_1, {"cellAlignment": True, "visualInspection": True}, "PASS"
    )
    assert not result.is_valid
    assert result.quality_score == pytest.approx(66.67)
    assert [f.criterion for f in result.failure_reasons] == ["electricalConnection"]
    assert "not recorded" in result.failure_reasons[0].reason


def test_declared_fail_is_valid():
    result = validate_inspection_criteria(
        STATION_1,
        {"cellAlignment": False, "electricalConnection": True, "visualInspection": True},
        "FAIL",
    )
    assert result.is_valid
    assert result.required_actions == ["Realign solar cells within tolerance"]


def test_optional_criteria_are_recorded_but_not_scored():
    result = validate_inspection_criteria(
        STATION_1,
        {
            "cellAlignment": True,
            "electricalConnection": True,
            "visualInspection": True,
            "stringCount": {"measured": 6, "nominal": 4},
            "unrelated": "ignored",
        },
        "PASS",
    )
    assert result.is_valid
    assert result.criteria["stringCount"] == Measurement(measured=6, nominal=4)
    assert "unrelated" not in result.criteria


def test_notes_required_for_final_fail():
    with pytest.raises(WorkflowError) as exc_info:
        validate_inspection_criteria(STATION_4, {"currentCheck": False}, "FAIL", notes="  ")
    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
    assert exc_info.value.details["criterion"] == "notes"

    result = validate_inspection_criteria(
        STATION_4, {"currentCheck": False, "notes": "Hot spot on cell 12"}, "FAIL"
    )
    assert result.is_valid
    assert result.quality_score == 0


def test_unknown_declared_result():
    with pytest.raises(WorkflowError) as exc_info:
        validate_inspection_criteria(STATION_1, {}, "MAYBE")
    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED


def test_coerce_values_by_catalog_type():
    assert coerce_criterion_value("cellAlignment", True) == BooleanCheck(passed=True)
    assert coerce_criterion_value("cellAlignment", "fail") == BooleanCheck(passed=False)
    assert coerce_criterion_value("efficiencyTest", 0.2) == PercentageReading(value=0.2)
    assert coerce_criterion_value("boxType", "IP68") == Observation(value="IP68")
    assert coerce_criterion_value("cellAlignment", None) is None
    assert coerce_criterion_value("powerOutput", 400) == Measurement(measured=400.0)


@pytest.mark.parametrize(
    "name,raw",
    [
        ("cellAlignment", 1.5),
        ("cellAlignment", "maybe"),
        ("powerOutput", {"measured": "lots"}),
        ("powerOutput", [400]),
    ],
)
def test_coerce_rejects_unreadable_values(name, raw):
    with pytest.raises(WorkflowError) as exc_info:
        coerce_criterion_value(name, raw)
    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED


def test_measurement_tolerance_boundary():
    power = get_criterion("powerOutput")
    assert evaluate_criterion(power, Measurement(measured=380.0, nominal=400.0))
    assert evaluate_criterion(power, Measurement(measured=420.0, nominal=400.0))
    assert not evaluate_criterion(power, Measurement(measured=379.9, nominal=400.0))


def test_measurement_without_nominal_cannot_be_scored():
    with pytest.raises(WorkflowError) as exc_info:
        evaluate_criterion(get_criterion("powerOutput"), Measurement(measured=400.0))
    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED


def test_efficiency_minimum_with_tolerance():
    efficiency = get_criterion("efficiencyTest")
    assert evaluate_criterion(efficiency, PercentageReading(value=0.17))
    assert not evaluate_criterion(efficiency, PercentageReading(value=0.16))


def test_required_action_fallback():
    assert required_action_for("frameAlignment") == "Realign frame with panel edges"
    assert required_action_for("mysteryCheck") == "Review and correct mysteryCheck issue"


@pytest.mark.parametrize("declared", [InspectionResult.PASS, InspectionResult.FAIL])
def test_declared_result_accepts_enum_members(declared):
    result = validate_inspection_criteria(
        STATION_1,
        {"cellAlignment": True, "electricalConnection": True, "visualInspection": True},
        declared,
    )
    assert result.is_valid
    assert result.quality_score == 100


def test_declared_result_is_case_insensitive():
    result = validate_inspection_criteria(
        STATION_1,
        {"cellAlignment": True, "electricalConnection": True, "visualInspection": True},
        " pass ",
    )
    assert result.is_valid


def test_plain_reading_without_nominal_counts_as_failed():
    result = validate_inspection_criteria(
        STATION_4,
        {
            "powerOutput": 370.0,
            "voltageCheck": {"measured": 49.5, "nominal": 49.8},
            "currentCheck": True,
            "efficiencyTest": 0.2,
        },
        "FAIL",
        notes="Low power output",
    )
    assert result.is_valid
    assert result.quality_score == 75
    assert [f.criterion for f in result.failure_reasons] == ["powerOutput"]
    assert "nominal" in result.failure_reasons[0].reason
    assert result.failure_reasons[0].value == 370.0


def test_plain_reading_without_nominal_invalidates_pass():
    result = validate_inspection_criteria(
        STATION_4,
        {
            "powerOutput": 400.0,
            "voltageCheck": {"measured": 49.5, "nominal": 49.8},
            "currentCheck": True,
            "efficiencyTest": 0.2,
        },
        "PASS",
    )
    assert not result.is_valid
    assert result.passed_criteria == 3


@pytest.mark.parametrize("declared", ["PASS", "FAIL"])
def test_station_without_required_criteria_scores_100(declared):
    config = StationConfig(
        station_id=StationId.STATION_1,
        name="Empty",
        workflow_step=State.ASSEMBLY_EL,
        next_step=State.FRAMING,
        criteria=StationCriteria(required=(), pass_threshold=0.95),
    )
    result = validate_inspection_criteria(config, {"cellAlignment": False}, declared)
    assert result.is_valid
    assert result.quality_score == 100
    assert result.total_criteria == 0
    assert result.failure_reasons == []
