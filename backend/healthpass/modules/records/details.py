"""Typed details for each health record kind.

Record details are stored as a JSON object. Before signing they are parsed
into one variant of :data:`RecordDetails`, and :func:`details_for_signing`
turns that variant into the details segment of the canonical message.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal, assert_never

from pydantic import BaseModel, ConfigDict, ValidationError

from healthpass.core.crypto.canonicalization import HealthRecordType
from healthpass.core.errors import BadInputError


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)


class VaccinationDetails(_DetailsBase):
    kind: Literal[HealthRecordType.VACCINATION] = HealthRecordType.VACCINATION
    vaccine_name: str | None = None
    manufacturer: str | None = None
    lot_number: str | None = None
    dose_number: int | None = None
    total_doses: int | None = None
    vaccination_site: str | None = None
    administrator: str | None = None


class TestResultDetails(_DetailsBase):
    kind: Literal[HealthRecordType.TEST_RESULT] = HealthRecordType.TEST_RESULT
    test_type: str | None = None  # PCR, Antigen, Antibody
    result: str | None = None  # Positive, Negative, Inconclusive
    test_method: str | None = None
    laboratory: str | None = None
    reference_range: str | None = None


class MedicalClearanceDetails(_DetailsBase):
    kind: Literal[HealthRecordType.MEDICAL_CLEARANCE] = HealthRecordType.MEDICAL_CLEARANCE
    clearance_type: str | None = None  # Travel, Work, Sports
    restrictions: list[str] = []
    valid_until: date | None = None
    physician: str | None = None
    medical_facility: str | None = None


class ImmunityProofDetails(_DetailsBase):
    kind: Literal[HealthRecordType.IMMUNITY_PROOF] = HealthRecordType.IMMUNITY_PROOF
    immunity_type: str | None = None  # Natural, Vaccine-induced, Hybrid
    antibody_level: float | None = None
    test_method: str | None = None
    laboratory: str | None = None
    reference_range: str | None = None


RecordDetails = (
    VaccinationDetails | TestResultDetails | MedicalClearanceDetails | ImmunityProofDetails
)

_DETAIL_MODELS: dict[HealthRecordType, type[_DetailsBase]] = {
    HealthRecordType.VACCINATION: VaccinationDetails,
    HealthRecordType.TEST_RESULT: TestResultDetails,
    HealthRecordType.MEDICAL_CLEARANCE: MedicalClearanceDetails,
    HealthRecordType.IMMUNITY_PROOF: ImmunityProofDetails,
}


def parse_record_details(
    record_type: HealthRecordType, details: dict[str, Any] | None
) -> RecordDetails:
    """Validate stored details against the model for ``record_type``."""
    record_type = HealthRecordType(record_type)
    payload = {k: v for k, v in (details or {}).items() if k != "kind"}
    model = _DETAIL_MODELS[record_type]
    try:
        parsed = model.model_validate(payload)
    except ValidationError as exc:
        raise BadInputError(
            f"Invalid {record_type.value} details: {exc.error_count()} validation error(s)"
        ) from exc
    return parsed  # type: ignore[return-value]


def details_for_signing(details: RecordDetails) -> str:
    """Render the details segment of the canonical message.

    The defaults match what offline producers emit for a record with no
    details; changing them breaks signature agreement with those producers.
    """
    match details:
        case VaccinationDetails(vaccine_name=name):
            return f"{name}_Dose1" if name is not None else "COVID19_Dose1"
        case TestResultDetails(result=result):
            return f"COVID19_{result}" if result is not None else "COVID19_Negative"
        case MedicalClearanceDetails(clearance_type=clearance):
            return clearance if clearance is not None else "FitForTravel"
        case ImmunityProofDetails(immunity_type=immunity):
            return f"COVID19_{immunity}" if immunity is not None else "COVID19_Antibodies"
        case _:
            assert_never(details)
