"""
Built-in code systems.

Small reference subsets for development and tests; production deployments
register lookups backed by their terminology tables.
"""

from __future__ import annotations

from .base import StaticCodeSystem
from .registry import CodeSystemRegistry

LOINC_URI = "http://loinc.org"
ICD10_CM_URI = "http://hl7.org/fhir/sid/icd-10-cm"
SNOMED_CT_URI = "http://snomed.info/sct"
RXNORM_URI = "http://www.nlm.nih.gov/research/umls/rxnorm"

LOINC = StaticCodeSystem(
    LOINC_URI,
    "LOINC",
    {
        "8310-5": "Body temperature",
        "8867-4": "Heart rate",
        "9279-1": "Respiratory rate",
        "2160-0": "Creatinine [Mass/volume] in Serum or Plasma",
        "2345-7": "Glucose [Mass/volume] in Serum or Plasma",
        "718-7": "Hemoglobin [Mass/volume] in Blood",
        "4548-4": "Hemoglobin A1c/Hemoglobin.total in Blood",
    },
)

ICD10_CM = StaticCodeSystem(
    ICD10_CM_URI,
    "ICD-10-CM",
    {
        "I10": "Essential (primary) hypertension",
        "E11.9": "Type 2 diabetes mellitus without complications",
        "J06.9": "Acute upper respiratory infection, unspecified",
        "M54.5": "Low back pain",
        "K21.0": "Gastro-esophageal reflux disease with esophagitis",
    },
)

SNOMED_CT = StaticCodeSystem(
    SNOMED_CT_URI,
    "SNOMED CT",
    {
        "80146002": "Appendectomy",
        "73761001": "Colonoscopy",
        "38341003": "Hypertensive disorder",
        "44054006": "Type 2 diabetes mellitus",
        "195967001": "Asthma",
    },
)

RXNORM = StaticCodeSystem(
    RXNORM_URI,
    "RxNorm",
    {
        "860975": "Metformin 500 mg oral tablet",
        "197361": "Amlodipine 5 mg oral tablet",
        "314076": "Lisinopril 10 mg oral tablet",
        "198440": "Atorvastatin 20 mg oral tablet",
        "310965": "Omeprazole 20 mg oral capsule",
    },
)


def default_registry(freeze: bool = True) -> CodeSystemRegistry:
    """Registry seeded with the built-in code systems.

    Args:
        freeze: Freeze before returning; pass False to register more systems
    """
    registry = CodeSystemRegistry([LOINC, ICD10_CM, SNOMED_CT, RXNORM])
    if freeze:
        registry.freeze()
    return registry
