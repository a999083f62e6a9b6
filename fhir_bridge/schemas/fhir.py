"""
FHIR-inspired JSON schemas and code systems.

Demonstrates:
- JSON Schema validation as a contract for data crossing a process boundary
  (the transform engine's stdout)
- The handful of FHIR/LOINC/UCUM constants the compliance rules depend on
"""

LOINC_SYSTEM = "http://loinc.org"
UCUM_SYSTEM = "http://unitsofmeasure.org"
ACT_CODE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"

BUNDLE_TYPES = frozenset({"transaction", "document", "collection"})
GENDER_CODES = frozenset({"male", "female", "other", "unknown"})
OBSERVATION_STATUSES = frozenset({"final", "preliminary", "amended"})

# Body temperature, body weight, blood pressure panel
VITAL_SIGN_LOINC = frozenset({"8310-5", "29463-7", "85354-9"})
BP_PANEL_LOINC = "85354-9"
SYSTOLIC_LOINC = "8480-6"
DIASTOLIC_LOINC = "8462-2"
BP_COMPONENT_LOINC = frozenset({SYSTOLIC_LOINC, DIASTOLIC_LOINC})

# Plausible clinical ranges in mmHg, inclusive
SYSTOLIC_RANGE = (30, 300)
DIASTOLIC_RANGE = (20, 200)

EXPECTED_RESOURCE_TYPES = (
    "Patient",
    "Encounter",
    "Observation",
    "Condition",
    "MedicationRequest",
)


FHIR_BUNDLE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "FHIR Bundle (envelope only)",
    "description": "Minimal shape the transform engine must produce.",
    "type": "object",
    "required": ["resourceType", "type"],
    "properties": {
        "resourceType": {
            "type": "string",
            "const": "Bundle",
            "description": "Must be 'Bundle' per FHIR spec.",
        },
        "id": {"type": "string"},
        "type": {"type": "string"},
        "timestamp": {"type": "string"},
        "entry": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "fullUrl": {"type": "string"},
                    "resource": {
                        "type": "object",
                        "required": ["resourceType"],
                        "properties": {"resourceType": {"type": "string"}},
                    },
                    "request": {
                        "type": "object",
                        "properties": {
                            "method": {"type": "string"},
                            "url": {"type": "string"},
                        },
                    },
                },
            },
        },
    },
}
