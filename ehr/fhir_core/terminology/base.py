"""
Code-system lookup protocol and a dict-backed implementation.

A code system is anything with a ``system`` URI and a ``lookup(code)``
method returning ``(display, found)``. The registry dispatches on the URI,
so adding a code system never touches dispatch logic.

Invariants:
    - lookup() never raises for an unknown code; it returns (None, False)
    - StaticCodeSystem is immutable after construction
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class CodeSystemLookup(Protocol):
    """Protocol for code-system lookups."""

    system: str

    @abstractmethod
    def lookup(self, code: str) -> Tuple[Optional[str], bool]:
        """Return ``(display, found)`` for a code."""
        ...


class StaticCodeSystem:
    """Code system backed by an in-memory code -> display table.

    Attributes:
        system: Canonical system URI
        name: Human-readable name (e.g. ``LOINC``)

    Example:
        >>> loinc = StaticCodeSystem("http://loinc.org", "LOINC", {"8867-4": "Heart rate"})
        >>> loinc.lookup("8867-4")
        ('Heart rate', True)
    """

    def __init__(self, system: str, name: str, codes: Mapping[str, str]) -> None:
        if not system:
            raise ValueError("Code system URI is required")
        self.system = system
        self.name = name
        self._codes = MappingProxyType(dict(codes))

    def lookup(self, code: str) -> Tuple[Optional[str], bool]:
        display = self._codes.get(code)
        return display, display is not None

    def __len__(self) -> int:
        return len(self._codes)

    def __repr__(self) -> str:
        return f"StaticCodeSystem(system={self.system!r}, name={self.name!r}, codes={len(self)})"


@dataclass(frozen=True)
class LookupResult:
    """Outcome of a registry lookup.

    Attributes:
        system: System URI that was consulted
        code: Code that was looked up
        found: Whether the code exists in the system
        display: Display text (None if not found)
        name: Name of the code system
    """

    system: str
    code: str
    found: bool
    display: Optional[str] = None
    name: Optional[str] = None

    def to_parameters(self) -> Dict[str, Any]:
        """Render as a FHIR ``Parameters`` resource ($lookup response)."""
        parameters = [
            {"name": "name", "valueString": self.name or self.system},
            {"name": "code", "valueCode": self.code},
            {"name": "system", "valueUri": self.system},
        ]
        if self.display is not None:
            parameters.append({"name": "display", "valueString": self.display})
        return {"resourceType": "Parameters", "parameter": parameters}


@dataclass(frozen=True)
class CodeValidation:
    """Outcome of validate_code().

    Attributes:
        result: True if the code exists and the display (if given) matches
        system: System URI
        code: Code that was validated
        display: The code system's display text, when the code exists
        message: Reason for a negative result
    """

    result: bool
    system: str
    code: str
    display: Optional[str] = None
    message: Optional[str] = None

    def to_parameters(self) -> Dict[str, Any]:
        """Render as a FHIR ``Parameters`` resource ($validate-code response)."""
        parameters: list = [{"name": "result", "valueBoolean": self.result}]
        if self.display is not None:
            parameters.append({"name": "display", "valueString": self.display})
        if self.message is not None:
            parameters.append({"name": "message", "valueString": self.message})
        return {"resourceType": "Parameters", "parameter": parameters}
