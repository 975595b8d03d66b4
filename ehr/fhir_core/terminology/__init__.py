"""
Terminology lookups for fhir-core.

Code systems implement CodeSystemLookup and are registered by URI in a
CodeSystemRegistry built at startup.
"""

from .base import CodeSystemLookup, CodeValidation, LookupResult, StaticCodeSystem
from .defaults import (
    ICD10_CM_URI,
    LOINC_URI,
    RXNORM_URI,
    SNOMED_CT_URI,
    default_registry,
)
from .registry import CodeSystemRegistry, DuplicateRegistrationError, RegistryFrozenError

__all__ = [
    "CodeSystemLookup",
    "StaticCodeSystem",
    "LookupResult",
    "CodeValidation",
    "CodeSystemRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "default_registry",
    "LOINC_URI",
    "ICD10_CM_URI",
    "SNOMED_CT_URI",
    "RXNORM_URI",
]
