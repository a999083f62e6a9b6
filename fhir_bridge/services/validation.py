"""
Validation services.

Demonstrates:
- Schema-driven data validation (a core pattern for healthcare interop)
- Collecting all errors rather than failing on the first one
- A rule-based compliance score for FHIR R4 transaction Bundles

The compliance engine is a pure function: every rule yields an immutable
``RuleOutcome`` and the result is a fold over the ordered outcomes. Counted
rules feed the score; advisory outcomes only add an issue.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

import jsonschema

from fhir_bridge.schemas.api import (
    Severity,
    ValidationIssue,
    ValidationResult,
    ValidationStats,
)
from fhir_bridge.schemas.bundle import (
    Bundle,
    CodeableConcept,
    Coding,
    Condition,
    Encounter,
    Entry,
    MedicationRequest,
    Observation,
    Patient,
    Quantity,
    Reference,
    UnknownResource,
    parse_bundle,
    resource_type_of,
)
from fhir_bridge.schemas.fhir import (
    ACT_CODE_SYSTEM,
    BP_COMPONENT_LOINC,
    BP_PANEL_LOINC,
    BUNDLE_TYPES,
    DIASTOLIC_LOINC,
    DIASTOLIC_RANGE,
    EXPECTED_RESOURCE_TYPES,
    GENDER_CODES,
    LOINC_SYSTEM,
    OBSERVATION_STATUSES,
    SYSTOLIC_LOINC,
    SYSTOLIC_RANGE,
    UCUM_SYSTEM,
    VITAL_SIGN_LOINC,
)


def validate_against_schema(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate a dict against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    return [error.message for error in validator.iter_errors(data)]


# ---------------------------------------------------------------------------
# Rule outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RuleOutcome:
    passed: bool
    issue: ValidationIssue | None = None
    counted: bool = True


def _rule(holds: bool, path: str, message: str, fix: str | None = None) -> RuleOutcome:
    """A scored rule: an error issue is attached only when it fails."""
    if holds:
        return RuleOutcome(passed=True)
    issue = ValidationIssue(severity=Severity.ERROR, path=path, message=message, fix=fix)
    return RuleOutcome(passed=False, issue=issue)


def _advise(
    path: str, message: str, fix: str | None = None, severity: Severity = Severity.WARNING
) -> RuleOutcome:
    issue = ValidationIssue(severity=severity, path=path, message=message, fix=fix)
    return RuleOutcome(passed=False, issue=issue, counted=False)


def _codings(concept: CodeableConcept | None) -> tuple[Coding, ...]:
    return concept.coding if concept is not None else ()


def _display(value: float) -> str:
    # Huge JSON integers overflow float formatting and int-to-str limits
    if isinstance(value, int) and value.bit_length() > 64:
        return "(value too large to display)"
    return f"{value:g}"


def _references_patient(subject: Reference | None) -> bool:
    return bool(subject and subject.reference and subject.reference.startswith("Patient/"))


def _subject_rule(prefix: str, resource_type: str, subject: Reference | None) -> RuleOutcome:
    return _rule(
        _references_patient(subject),
        f"{prefix}.resource.subject",
        f"{resource_type}.subject must reference a Patient",
    )


# ---------------------------------------------------------------------------
# Bundle and entry rules
# ---------------------------------------------------------------------------

def _bundle_rules(bundle: Bundle) -> Iterator[RuleOutcome]:
    yield _rule(
        bundle.resource_type == "Bundle",
        "Bundle.resourceType",
        "resourceType must be 'Bundle'",
    )
    yield _rule(
        bundle.type in BUNDLE_TYPES,
        "Bundle.type",
        f"Bundle.type '{bundle.type or '(missing)'}' is not a valid FHIR bundle type",
        fix="Use 'transaction' for POSTing to a FHIR server",
    )
    if not bundle.id:
        yield _advise(
            "Bundle.id",
            "Bundle.id is missing; the server will assign one, but it aids traceability",
        )


def _entry_rules(index: int, entry: Entry) -> Iterator[RuleOutcome]:
    prefix = f"Bundle.entry[{index}]"
    resource = entry.resource
    full_url = entry.full_url or ""
    resource_id = getattr(resource, "id", None) or "<resource-id>"

    yield _rule(
        full_url.startswith(("urn:uuid:", "http://", "https://")),
        f"{prefix}.fullUrl",
        "fullUrl is missing or not in urn:uuid: format; required for "
        "cross-references in transaction bundles",
        fix=f'Set to "urn:uuid:{resource_id}"',
    )
    yield _rule(
        bool(entry.request and entry.request.method and entry.request.url),
        f"{prefix}.request",
        "request.method and request.url are required for transaction bundles",
    )

    if resource is None:
        return
    if isinstance(resource, Patient):
        yield from _patient_rules(prefix, resource)
    elif isinstance(resource, Encounter):
        yield from _encounter_rules(prefix, resource)
    elif isinstance(resource, Observation):
        yield from _observation_rules(prefix, resource)
    elif isinstance(resource, Condition):
        yield from _condition_rules(prefix, resource)
    elif isinstance(resource, MedicationRequest):
        yield from _medication_request_rules(prefix, resource)
    elif isinstance(resource, UnknownResource):
        yield _advise(
            f"{prefix}.resource",
            f"{resource_type_of(resource)} is not covered by the compliance rule set",
            severity=Severity.INFO,
        )
    else:
        raise TypeError(f"Unhandled resource variant: {type(resource).__name__}")


# ---------------------------------------------------------------------------
# Resource rules
# ---------------------------------------------------------------------------

def _patient_rules(prefix: str, patient: Patient) -> Iterator[RuleOutcome]:
    yield _rule(
        len(patient.identifier) > 0,
        f"{prefix}.resource.identifier",
        "Patient.identifier is required; must include national ID or clinic number",
        fix="Add Kenya DHA national-id identifier",
    )
    yield _rule(
        bool(patient.name and patient.name[0].family),
        f"{prefix}.resource.name",
        "Patient.name with family name is required",
    )
    yield _rule(
        patient.gender in GENDER_CODES,
        f"{prefix}.resource.gender",
        f"Patient.gender '{patient.gender or '(missing)'}' is not a valid FHIR gender code",
        fix="Use male | female | other | unknown",
    )


def _encounter_rules(prefix: str, encounter: Encounter) -> Iterator[RuleOutcome]:
    yield _rule(
        bool(encounter.status),
        f"{prefix}.resource.status",
        "Encounter.status is required",
    )
    yield _rule(
        bool(encounter.encounter_class and encounter.encounter_class.code),
        f"{prefix}.resource.class",
        "Encounter.class is required (FHIR R4 mandatory field)",
        fix=f"Set to {{system: {ACT_CODE_SYSTEM}, code: AMB}}",
    )
    yield _subject_rule(prefix, "Encounter", encounter.subject)


def _observation_rules(prefix: str, obs: Observation) -> Iterator[RuleOutcome]:
    yield _rule(
        obs.status in OBSERVATION_STATUSES,
        f"{prefix}.resource.status",
        f"Observation.status '{obs.status or '(missing)'}' must be final | preliminary | amended",
    )
    yield _rule(
        any(c.code == "vital-signs" for concept in obs.category for c in concept.coding),
        f"{prefix}.resource.category",
        "Vital-sign Observation must have category 'vital-signs'",
        fix="Add category with system observation-category, code vital-signs",
    )

    loinc = next((c for c in _codings(obs.code) if c.system == LOINC_SYSTEM), None)
    loinc_code = loinc.code if loinc is not None else None
    yield _rule(
        loinc_code in VITAL_SIGN_LOINC,
        f"{prefix}.resource.code",
        f"Observation.code LOINC '{loinc_code or '(missing)'}' is not a recognised vital-signs LOINC",
        fix="Use 8310-5 (temp), 29463-7 (weight), or 85354-9 (BP panel)",
    )
    yield _subject_rule(prefix, "Observation", obs.subject)

    if any(c.code == BP_PANEL_LOINC for c in _codings(obs.code)):
        yield from _bp_panel_rules(prefix, obs)
    else:
        yield _rule(
            obs.value_quantity is not None and obs.value_quantity.value is not None,
            f"{prefix}.resource.valueQuantity",
            "Observation must have valueQuantity for scalar vital signs",
        )

    quantities: list[Quantity] = []
    if obs.value_quantity is not None:
        quantities.append(obs.value_quantity)
    quantities.extend(c.value_quantity for c in obs.component if c.value_quantity is not None)
    if not all(q.system == UCUM_SYSTEM for q in quantities):
        yield _advise(
            f"{prefix}.resource.valueQuantity.system",
            f"Observation quantity units should use UCUM ({UCUM_SYSTEM})",
        )


def _bp_panel_rules(prefix: str, obs: Observation) -> Iterator[RuleOutcome]:
    component_codes = {c.code for comp in obs.component for c in _codings(comp.code)}
    yield _rule(
        SYSTOLIC_LOINC in component_codes and DIASTOLIC_LOINC in component_codes,
        f"{prefix}.resource.component",
        f"BP panel ({BP_PANEL_LOINC}) must have components for systolic "
        f"({SYSTOLIC_LOINC}) and diastolic ({DIASTOLIC_LOINC})",
        fix=f"Add component[] with LOINC codes {SYSTOLIC_LOINC} and {DIASTOLIC_LOINC}",
    )

    if obs.value_quantity is not None:
        yield _advise(
            f"{prefix}.resource.valueQuantity",
            "BP panel should not have a top-level valueQuantity; values belong in components",
        )

    for ci, comp in enumerate(obs.component):
        code = next((c.code for c in _codings(comp.code) if c.code in BP_COMPONENT_LOINC), None)
        if code is None or comp.value_quantity is None or comp.value_quantity.value is None:
            continue
        value = comp.value_quantity.value
        if code == SYSTOLIC_LOINC:
            label, (low, high) = "Systolic", SYSTOLIC_RANGE
        else:
            label, (low, high) = "Diastolic", DIASTOLIC_RANGE
        yield _rule(
            low <= value <= high,
            f"{prefix}.resource.component[{ci}].valueQuantity.value",
            f"{label} BP {_display(value)} is outside plausible clinical range ({low}-{high} mmHg)",
        )


def _condition_rules(prefix: str, condition: Condition) -> Iterator[RuleOutcome]:
    status_codings = _codings(condition.clinical_status)
    yield _rule(
        bool(status_codings and status_codings[0].code),
        f"{prefix}.resource.clinicalStatus",
        "Condition.clinicalStatus is required with a coded value",
    )
    yield _subject_rule(prefix, "Condition", condition.subject)


def _medication_request_rules(prefix: str, request: MedicationRequest) -> Iterator[RuleOutcome]:
    yield _rule(
        bool(request.status),
        f"{prefix}.resource.status",
        "MedicationRequest.status is required",
    )
    yield _rule(
        bool(request.intent),
        f"{prefix}.resource.intent",
        "MedicationRequest.intent is required",
    )
    yield _rule(
        request.medication_codeable_concept is not None
        or bool(request.medication_reference and request.medication_reference.reference),
        f"{prefix}.resource.medication[x]",
        "MedicationRequest must have medication[x] (e.g. medicationCodeableConcept)",
    )
    yield _subject_rule(prefix, "MedicationRequest", request.subject)


def _coverage_advisories(resource_counts: Counter) -> Iterator[RuleOutcome]:
    for resource_type in EXPECTED_RESOURCE_TYPES:
        if not resource_counts[resource_type]:
            yield _advise(
                "Bundle.entry",
                f"No {resource_type} resource found in bundle; expected for a clinic visit record",
            )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _score(checked: int, passed: int) -> int:
    if checked == 0:
        return 0
    # Half rounds up, not to even
    return math.floor(100 * passed / checked + 0.5)


def _fold(outcomes: Iterable[RuleOutcome]) -> tuple[int, int, list[ValidationIssue]]:
    checked, passed, issues = 0, 0, []
    for outcome in outcomes:
        if outcome.counted:
            checked += 1
            passed += outcome.passed
        if outcome.issue is not None:
            issues.append(outcome.issue)
    return checked, passed, issues


def validate_parsed(bundle: Bundle) -> ValidationResult:
    """Score a parsed Bundle against the compliance rule set."""
    resource_counts: Counter = Counter(
        resource_type_of(e.resource) if e.resource is not None else "(unknown)"
        for e in bundle.entries
    )

    outcomes: list[RuleOutcome] = list(_bundle_rules(bundle))
    for index, entry in enumerate(bundle.entries):
        outcomes.extend(_entry_rules(index, entry))
    outcomes.extend(_coverage_advisories(resource_counts))

    checked, passed, issues = _fold(outcomes)
    return ValidationResult(
        valid=not any(i.severity == Severity.ERROR for i in issues),
        score=_score(checked, passed),
        issues=issues,
        stats=ValidationStats(
            totalEntries=len(bundle.entries),
            resourceTypes=dict(resource_counts),
            checkedRules=checked,
            passedRules=passed,
        ),
    )


def validate_bundle(document: dict[str, Any]) -> ValidationResult:
    """
    Validate a raw FHIR Bundle dict.
    Malformed structure is reported as issues, never raised.
    """
    return validate_parsed(parse_bundle(document))
