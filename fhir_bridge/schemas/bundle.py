"""
Typed view of a FHIR R4 Bundle for rule-based validation.

Demonstrates:
- An explicit tagged union over the resource kinds the rule set knows about,
  with an ``UnknownResource`` case for everything else
- Optional fields modeled as ``X | None`` so "absent" never collides with a
  sentinel value
- Tolerant parsing: generated Bundles are often malformed, and a malformed
  field must surface as a validation issue rather than a crash

Only the fields the compliance rules read are modeled; the raw dict stays the
source of truth for everything else (download, signing, submission).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coding:
    system: str | None = None
    code: str | None = None
    display: str | None = None


@dataclass(frozen=True)
class CodeableConcept:
    coding: tuple[Coding, ...] = ()
    text: str | None = None


@dataclass(frozen=True)
class Quantity:
    value: float | None = None
    unit: str | None = None
    system: str | None = None


@dataclass(frozen=True)
class Reference:
    reference: str | None = None


@dataclass(frozen=True)
class Identifier:
    system: str | None = None
    value: str | None = None


@dataclass(frozen=True)
class HumanName:
    family: str | None = None
    given: tuple[str, ...] = ()


@dataclass(frozen=True)
class ObservationComponent:
    code: CodeableConcept | None = None
    value_quantity: Quantity | None = None


# ---------------------------------------------------------------------------
# Resources – one variant per known resourceType
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Patient:
    id: str | None = None
    identifier: tuple[Identifier, ...] = ()
    name: tuple[HumanName, ...] = ()
    gender: str | None = None


@dataclass(frozen=True)
class Encounter:
    id: str | None = None
    status: str | None = None
    encounter_class: Coding | None = None
    subject: Reference | None = None


@dataclass(frozen=True)
class Observation:
    id: str | None = None
    status: str | None = None
    category: tuple[CodeableConcept, ...] = ()
    code: CodeableConcept | None = None
    subject: Reference | None = None
    value_quantity: Quantity | None = None
    component: tuple[ObservationComponent, ...] = ()


@dataclass(frozen=True)
class Condition:
    id: str | None = None
    clinical_status: CodeableConcept | None = None
    subject: Reference | None = None


@dataclass(frozen=True)
class MedicationRequest:
    id: str | None = None
    status: str | None = None
    intent: str | None = None
    medication_codeable_concept: CodeableConcept | None = None
    medication_reference: Reference | None = None
    subject: Reference | None = None


@dataclass(frozen=True)
class UnknownResource:
    """Any resourceType the rule set does not cover (or none at all)."""
    resource_type: str | None = None
    id: str | None = None


Resource = Union[Patient, Encounter, Observation, Condition, MedicationRequest, UnknownResource]


def resource_type_of(resource: Resource) -> str:
    if isinstance(resource, UnknownResource):
        return resource.resource_type or "(unknown)"
    return type(resource).__name__


@dataclass(frozen=True)
class Request:
    method: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class Entry:
    full_url: str | None = None
    resource: Resource | None = None
    request: Request | None = None


@dataclass(frozen=True)
class Bundle:
    resource_type: str | None = None
    id: str | None = None
    type: str | None = None
    timestamp: str | None = None
    entries: tuple[Entry, ...] = ()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _number(value: Any) -> float | None:
    # bool is an int subclass; true/false are not quantities
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _coding(raw: Any) -> Coding | None:
    data = _dict(raw)
    if data is None:
        return None
    return Coding(
        system=_str(data.get("system")),
        code=_str(data.get("code")),
        display=_str(data.get("display")),
    )


def _concept(raw: Any) -> CodeableConcept | None:
    data = _dict(raw)
    if data is None:
        return None
    codings = (_coding(c) for c in _list(data.get("coding")))
    return CodeableConcept(
        coding=tuple(c for c in codings if c is not None),
        text=_str(data.get("text")),
    )


def _quantity(raw: Any) -> Quantity | None:
    data = _dict(raw)
    if data is None:
        return None
    return Quantity(
        value=_number(data.get("value")),
        unit=_str(data.get("unit")),
        system=_str(data.get("system")),
    )


def _reference(raw: Any) -> Reference | None:
    data = _dict(raw)
    if data is None:
        return None
    return Reference(reference=_str(data.get("reference")))


def _identifier(raw: Any) -> Identifier | None:
    data = _dict(raw)
    if data is None:
        return None
    return Identifier(system=_str(data.get("system")), value=_str(data.get("value")))


def _human_name(raw: Any) -> HumanName | None:
    data = _dict(raw)
    if data is None:
        return None
    given = tuple(g for g in _list(data.get("given")) if isinstance(g, str))
    return HumanName(family=_str(data.get("family")), given=given)


def _component(raw: Any) -> ObservationComponent | None:
    data = _dict(raw)
    if data is None:
        return None
    return ObservationComponent(
        code=_concept(data.get("code")),
        value_quantity=_quantity(data.get("valueQuantity")),
    )


def _parsed(items: list[Any], parse) -> tuple:
    return tuple(p for p in (parse(i) for i in items) if p is not None)


def parse_resource(raw: Any) -> Resource | None:
    """Build the resource variant for a raw resource dict (None if not a dict)."""
    data = _dict(raw)
    if data is None:
        return None

    resource_type = _str(data.get("resourceType"))
    resource_id = _str(data.get("id"))

    if resource_type == "Patient":
        return Patient(
            id=resource_id,
            identifier=_parsed(_list(data.get("identifier")), _identifier),
            name=_parsed(_list(data.get("name")), _human_name),
            gender=_str(data.get("gender")),
        )
    if resource_type == "Encounter":
        return Encounter(
            id=resource_id,
            status=_str(data.get("status")),
            encounter_class=_coding(data.get("class")),
            subject=_reference(data.get("subject")),
        )
    if resource_type == "Observation":
        return Observation(
            id=resource_id,
            status=_str(data.get("status")),
            category=_parsed(_list(data.get("category")), _concept),
            code=_concept(data.get("code")),
            subject=_reference(data.get("subject")),
            value_quantity=_quantity(data.get("valueQuantity")),
            component=_parsed(_list(data.get("component")), _component),
        )
    if resource_type == "Condition":
        return Condition(
            id=resource_id,
            clinical_status=_concept(data.get("clinicalStatus")),
            subject=_reference(data.get("subject")),
        )
    if resource_type == "MedicationRequest":
        return MedicationRequest(
            id=resource_id,
            status=_str(data.get("status")),
            intent=_str(data.get("intent")),
            medication_codeable_concept=_concept(data.get("medicationCodeableConcept")),
            medication_reference=_reference(data.get("medicationReference")),
            subject=_reference(data.get("subject")),
        )
    return UnknownResource(resource_type=resource_type, id=resource_id)


def _entry(raw: Any) -> Entry:
    data = _dict(raw)
    if data is None:
        return Entry()
    request = _dict(data.get("request"))
    return Entry(
        full_url=_str(data.get("fullUrl")),
        resource=parse_resource(data.get("resource")),
        request=Request(method=_str(request.get("method")), url=_str(request.get("url")))
        if request is not None
        else None,
    )


def parse_bundle(data: dict[str, Any]) -> Bundle:
    """Parse a raw Bundle dict. Never raises; malformed parts become absent."""
    return Bundle(
        resource_type=_str(data.get("resourceType")),
        id=_str(data.get("id")),
        type=_str(data.get("type")),
        timestamp=_str(data.get("timestamp")),
        entries=tuple(_entry(e) for e in _list(data.get("entry"))),
    )
