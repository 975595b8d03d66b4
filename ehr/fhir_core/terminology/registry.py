"""
Code-system registry.

The registry maps system URIs to CodeSystemLookup implementations. It is
mutable during startup and frozen before serving.

Invariants:
    - Once frozen, no code system can be registered
    - A system URI is registered at most once
    - Lookups after freeze are lock-free

How to change safely:
    - Register every code system before calling freeze()
    - New code systems only need a CodeSystemLookup implementation

Example:
    >>> registry = CodeSystemRegistry([loinc, icd10])
    >>> registry.freeze()
    >>> registry.lookup("http://loinc.org", "8867-4").display
    'Heart rate'
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional

from ..errors import InternalConfigError, InvalidParameterError, NotFoundError
from .base import CodeSystemLookup, CodeValidation, LookupResult

logger = logging.getLogger(__name__)


class RegistryFrozenError(InternalConfigError):
    """Raised when attempting to modify a frozen registry."""


class DuplicateRegistrationError(InternalConfigError):
    """Raised when a system URI is registered twice."""


class CodeSystemRegistry:
    """Dispatch table from system URI to code-system lookup.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
    """

    def __init__(self, lookups: Iterable[CodeSystemLookup] = ()) -> None:
        self._systems: Dict[str, CodeSystemLookup] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for lookup in lookups:
            self.register(lookup)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, lookup: CodeSystemLookup) -> None:
        """Register a code system under its ``system`` URI.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the URI is already registered
            InternalConfigError: If the object is not a CodeSystemLookup
        """
        if not isinstance(lookup, CodeSystemLookup):
            raise InternalConfigError(f"{lookup!r} does not implement CodeSystemLookup")

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register code system '{lookup.system}': registry is frozen"
                )
            if lookup.system in self._systems:
                raise DuplicateRegistrationError(
                    f"Code system '{lookup.system}' is already registered"
                )
            self._systems[lookup.system] = lookup
            logger.debug("Registered code system", extra={"system": lookup.system})

    def freeze(self) -> None:
        """Freeze the registry. Idempotent."""
        with self._lock:
            if not self._frozen:
                self._frozen = True
                logger.info("Code system registry frozen", extra={"systems": len(self._systems)})

    def get(self, system: str) -> Optional[CodeSystemLookup]:
        return self._systems.get(system)

    def systems(self) -> List[str]:
        """Registered system URIs, sorted."""
        return sorted(self._systems)

    def __contains__(self, system: object) -> bool:
        return system in self._systems

    def __iter__(self) -> Iterator[CodeSystemLookup]:
        return iter(list(self._systems.values()))

    def __len__(self) -> int:
        return len(self._systems)

    def _resolve(self, system: str, code: str) -> CodeSystemLookup:
        if not system:
            raise InvalidParameterError("system is required", parameter="system", value=system)
        if not code:
            raise InvalidParameterError("code is required", parameter="code", value=code)
        lookup = self._systems.get(system)
        if lookup is None:
            raise NotFoundError(f"Unknown code system: {system}", details={"system": system})
        return lookup

    def lookup(self, system: str, code: str) -> LookupResult:
        """Look a code up in its code system.

        Raises:
            InvalidParameterError: If system or code is empty
            NotFoundError: If the system is not registered
        """
        lookup = self._resolve(system, code)
        display, found = lookup.lookup(code)
        return LookupResult(
            system=system,
            code=code,
            found=found,
            display=display if found else None,
            name=getattr(lookup, "name", None),
        )

    def validate_code(
        self, system: str, code: str, display: Optional[str] = None
    ) -> CodeValidation:
        """Check that a code exists and, if given, that its display matches.

        Raises:
            InvalidParameterError: If system or code is empty
            NotFoundError: If the system is not registered
        """
        result = self.lookup(system, code)
        if not result.found:
            return CodeValidation(
                result=False,
                system=system,
                code=code,
                message=f"Code '{code}' not found in {system}",
            )
        if display is not None and display != result.display:
            return CodeValidation(
                result=False,
                system=system,
                code=code,
                display=result.display,
                message=f"Display '{display}' does not match '{result.display}'",
            )
        return CodeValidation(result=True, system=system, code=code, display=result.display)
