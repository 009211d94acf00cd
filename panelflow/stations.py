"""Static station and quality criteria configuration.

Every station maps to exactly one workflow step. The registry is read-only;
lookups for unknown stations raise ``WorkflowError`` with
``INVALID_STATION``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ErrorCode, WorkflowError
from .models import CriterionType, State, StationId


class QualityCriterion(BaseModel):
    """Catalog entry describing how a criterion is measured."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    description: str = ""
    type: CriterionType = CriterionType.BOOLEAN
    unit: Optional[str] = None
    tolerance: Optional[float] = Field(default=None, description="Relative tolerance")
    nominal: Optional[float] = None
    minimum: Optional[float] = None


class StationCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()
    pass_threshold: float = Field(ge=0.0, le=1.0)
    notes_required: bool = False


class StationConfig(BaseModel):
    """Workflow step and inspection rules of one station."""

    model_config = ConfigDict(frozen=True)

    station_id: StationId
    name: str
    workflow_step: State
    next_step: State
    criteria: StationCriteria


def _boolean(name: str, label: str, description: str) -> QualityCriterion:
    return QualityCriterion(name=name, label=label, description=description)


_CATALOG: List[QualityCriterion] = [
    # Station 1: Assembly & EL
    _boolean("cellAlignment", "Cell Alignment", "Solar cells are properly aligned within tolerance"),
    _boolean("electricalConnection", "Electrical Connection", "Electrical connections are secure and properly soldered"),
    _boolean("visualInspection", "Visual Inspection", "No visible defects, cracks, or contamination"),
    QualityCriterion(
        name="cellCount",
        label="Cell Count",
        description="Correct number of cells for panel type",
        type=CriterionType.NUMBER,
        tolerance=0.0,
    ),
    QualityCriterion(
        name="stringCount",
        label="String Count",
        description="Correct number of cell strings",
        type=CriterionType.NUMBER,
        tolerance=0.0,
    ),
    # Station 2: Framing
    _boolean("frameAlignment", "Frame Alignment", "Frame is properly aligned with panel edges"),
    _boolean("cornerSeals", "Corner Seals", "Corner seals are properly applied and sealed"),
    _boolean("mountingHoles", "Mounting Holes", "Mounting holes are properly drilled and positioned"),
    QualityCriterion(name="frameType", label="Frame Type", type=CriterionType.TEXT),
    QualityCriterion(name="cornerType", label="Corner Type", type=CriterionType.TEXT),
    _boolean("sealQuality", "Seal Quality", "Seal bead is continuous and even"),
    # Station 3: Junction Box
    _boolean("boxAlignment", "Box Alignment", "Junction box is properly positioned and aligned"),
    _boolean("cableRouting", "Cable Routing", "Cables are properly routed and secured"),
    _boolean("sealIntegrity", "Seal Integrity", "Junction box seal is intact and waterproof"),
    QualityCriterion(name="boxType", label="Box Type", type=CriterionType.TEXT),
    QualityCriterion(name="cableType", label="Cable Type", type=CriterionType.TEXT),
    QualityCriterion(name="connectorType", label="Connector Type", type=CriterionType.TEXT),
    # Station 4: Performance & Final Inspection
    QualityCriterion(
        name="powerOutput",
        label="Power Output",
        description="Power output meets specification requirements",
        type=CriterionType.NUMBER,
        unit="W",
        tolerance=0.05,
    ),
    QualityCriterion(
        name="voltageCheck",
        label="Voltage Check",
        description="Open circuit voltage within specification",
        type=CriterionType.NUMBER,
        unit="V",
        tolerance=0.03,
    ),
    QualityCriterion(
        name="currentCheck",
        label="Current Check",
        description="Short circuit current within specification",
        type=CriterionType.NUMBER,
        unit="A",
        tolerance=0.05,
    ),
    QualityCriterion(
        name="efficiencyTest",
        label="Efficiency Test",
        description="Panel efficiency meets minimum requirements",
        type=CriterionType.PERCENTAGE,
        unit="%",
        tolerance=0.01,
        minimum=0.18,
    ),
    QualityCriterion(
        name="temperatureCoefficient",
        label="Temperature Coefficient",
        type=CriterionType.NUMBER,
        unit="%/C",
    ),
    QualityCriterion(name="irradianceResponse", label="Irradiance Response", type=CriterionType.NUMBER),
    QualityCriterion(name="spectralResponse", label="Spectral Response", type=CriterionType.NUMBER),
]

QUALITY_CRITERIA: Mapping[str, QualityCriterion] = MappingProxyType(
    {c.name: c for c in _CATALOG}
)

STATION_CONFIGS: Mapping[StationId, StationConfig] = MappingProxyType(
    {
        StationId.STATION_1: StationConfig(
            station_id=StationId.STATION_1,
            name="Assembly & EL",
            workflow_step=State.ASSEMBLY_EL,
            next_step=State.FRAMING,
            criteria=StationCriteria(
                required=("cellAlignment", "electricalConnection", "visualInspection"),
                optional=("cellCount", "stringCount", "voltageCheck"),
                pass_threshold=0.95,
            ),
        ),
        StationId.STATION_2: StationConfig(
            station_id=StationId.STATION_2,
            name="Framing",
            workflow_step=State.FRAMING,
            next_step=State.JUNCTION_BOX,
            criteria=StationCriteria(
                required=("frameAlignment", "cornerSeals", "mountingHoles"),
                optional=("frameType", "cornerType", "sealQuality"),
                pass_threshold=0.95,
            ),
        ),
        StationId.STATION_3: StationConfig(
            station_id=StationId.STATION_3,
            name="Junction Box",
            workflow_step=State.JUNCTION_BOX,
            next_step=State.PERFORMANCE_FINAL,
            criteria=StationCriteria(
                required=("boxAlignment", "cableRouting", "sealIntegrity"),
                optional=("boxType", "cableType", "connectorType"),
                pass_threshold=0.95,
            ),
        ),
        StationId.STATION_4: StationConfig(
            station_id=StationId.STATION_4,
            name="Performance & Final Inspection",
            workflow_step=State.PERFORMANCE_FINAL,
            next_step=State.COMPLETED,
            criteria=StationCriteria(
                required=("powerOutput", "voltageCheck", "currentCheck", "efficiencyTest"),
                optional=(
                    "temperatureCoefficient",
                    "irradianceResponse",
                    "spectralResponse",
                ),
                # final inspection
                pass_threshold=0.98,
                notes_required=True,
            ),
        ),
    }
)

_STATION_BY_STEP: Dict[State, StationId] = {
    config.workflow_step: station_id for station_id, config in STATION_CONFIGS.items()
}


def parse_station_id(station_id: StationId | str) -> Optional[StationId]:
    """Return the ``StationId`` for ``station_id`` or ``None`` if unknown."""
    if isinstance(station_id, StationId):
        return station_id
    try:
        return StationId(str(station_id).strip().upper())
    except ValueError:
        return None


def get_station_config(station_id: StationId | str) -> StationConfig:
    """Look up a station configuration.

    Raises:
        WorkflowError: ``INVALID_STATION`` when the station does not exist.
    """
    parsed = parse_station_id(station_id)
    if parsed is None:
        raise WorkflowError(
            ErrorCode.INVALID_STATION,
            f"Station not found: {station_id}",
            details={"station_id": str(station_id)},
        )
    return STATION_CONFIGS[parsed]


def station_for_state(state: State) -> Optional[StationId]:
    """Return the station whose workflow step is ``state``, if any."""
    return _STATION_BY_STEP.get(state)


def get_criterion(name: str) -> Optional[QualityCriterion]:
    return QUALITY_CRITERIA.get(name)


def list_stations() -> List[StationConfig]:
    return list(STATION_CONFIGS.values())
