"""Step validation primitives.

This module defines the result type returned by step validators and a
``ValidationService`` holding named validators. The flow engine stores the
latest result per step in ``FlowState.errors`` and publishes
``flow-validation-error`` when a result is invalid.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeAlias
from urllib.parse import urlparse

__all__ = [
    "ValidationIssue",
    "ValidationResult",
    "ValidationService",
    "ValidatorFunction",
    "run_validator",
]


@dataclass
class ValidationIssue:
    """A single problem reported by a validator.

    Attributes:
        message: Human readable description of the problem.
        field: Optional data key the problem refers to.
        severity: ``error``, ``warning`` or ``info``. Only errors make a result invalid.
    """

    message: str
    field: str | None = None
    severity: str = "error"


@dataclass
class ValidationResult:
    """Outcome of validating a step.

    Attributes:
        is_valid: Whether the step may be left.
        errors: Issues found by the validator.
    """

    is_valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)

    @classmethod
    def ok(cls) -> ValidationResult:
        """Return a passing result."""
        return cls(is_valid=True, errors=[])

    @classmethod
    def fail(cls, message: str, field: str | None = None) -> ValidationResult:
        """Return a failing result with a single error.

        Args:
            message: Error message.
            field: Optional data key the error refers to.

        Returns:
            An invalid ValidationResult.
        """
        return cls(is_valid=False, errors=[ValidationIssue(message=message, field=field)])

    def merge(self, other: ValidationResult) -> ValidationResult:
        """Combine two results; the merged result is valid only if both are."""
        return ValidationResult(
            is_valid=self.is_valid and other.is_valid,
            errors=[*self.errors, *other.errors],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [{"message": e.message, "field": e.field, "severity": e.severity} for e in self.errors],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ValidationResult:
        return cls(
            is_valid=bool(payload.get("is_valid", True)),
            errors=[ValidationIssue(**issue) for issue in payload.get("errors", [])],
        )


ValidatorFunction: TypeAlias = Callable[..., "ValidationResult | Awaitable[ValidationResult]"]
"""``(value, instance_data) -> ValidationResult``, sync or async."""


async def run_validator(validator: ValidatorFunction, value: Any, data: dict[str, Any] | None = None) -> ValidationResult:
    """Call a validator and await its result if it returned an awaitable.

    Args:
        validator: The validator to call.
        value: The value being validated.
        data: The accumulated instance data, passed as the second argument.

    Returns:
        The validator's result.
    """
    result = validator(value, data or {})
    if inspect.isawaitable(result):
        result = await result
    return result


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _required(value: Any, data: dict[str, Any]) -> ValidationResult:
    if value is None or value == "":
        return ValidationResult.fail("This field is required")
    return ValidationResult.ok()


def _email(value: Any, data: dict[str, Any]) -> ValidationResult:
    if not isinstance(value, str) or not _EMAIL_RE.match(value):
        return ValidationResult.fail("Invalid email address")
    return ValidationResult.ok()


def _url(value: Any, data: dict[str, Any]) -> ValidationResult:
    parsed = urlparse(value) if isinstance(value, str) else None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        return ValidationResult.fail("Invalid URL")
    return ValidationResult.ok()


def _min_length(value: Any, data: dict[str, Any]) -> ValidationResult:
    min_length = data.get("min_length") or 1
    if len(value or "") < min_length:
        return ValidationResult.fail(f"Must be at least {min_length} characters")
    return ValidationResult.ok()


def _max_length(value: Any, data: dict[str, Any]) -> ValidationResult:
    max_length = data.get("max_length") or 1000
    if len(value or "") > max_length:
        return ValidationResult.fail(f"Must be no more than {max_length} characters")
    return ValidationResult.ok()


def _pattern(value: Any, data: dict[str, Any]) -> ValidationResult:
    pattern = data.get("pattern")
    if not pattern:
        return ValidationResult.ok()
    if not isinstance(value, str) or not re.search(pattern, value):
        return ValidationResult.fail(data.get("pattern_message") or "Invalid format")
    return ValidationResult.ok()


def _range(value: Any, data: dict[str, Any]) -> ValidationResult:
    minimum = data.get("min")
    maximum = data.get("max")
    errors: list[ValidationIssue] = []
    if minimum is not None and value < minimum:
        errors.append(ValidationIssue(message=f"Value must be at least {minimum}"))
    if maximum is not None and value > maximum:
        errors.append(ValidationIssue(message=f"Value must be no more than {maximum}"))
    return ValidationResult(is_valid=not errors, errors=errors)


class ValidationService:
    """Registry of named validators.

    A fresh service comes with the built-in validators ``required``, ``email``,
    ``url``, ``min_length``, ``max_length``, ``pattern`` and ``range``.
    Parametrised validators read their parameters from the ``data`` mapping
    passed as the second argument (``min_length``, ``max_length``, ``pattern``,
    ``pattern_message``, ``min``, ``max``).

    Example:
        >>> service = ValidationService()
        >>> step = FlowStep(id="email", validator=service.get("email"))
    """

    def __init__(self) -> None:
        """Initialize the service with the built-in validators."""
        self._validators: dict[str, ValidatorFunction] = {}
        self._register_builtins()

    def register(self, name: str, validator: ValidatorFunction) -> None:
        """Register (or replace) a named validator."""
        self._validators[name] = validator

    def get(self, name: str) -> ValidatorFunction | None:
        """Return a named validator, or None if it is not registered."""
        return self._validators.get(name)

    def names(self) -> list[str]:
        return list(self._validators)

    async def validate(self, name: str, value: Any, data: dict[str, Any] | None = None) -> ValidationResult:
        """Run a named validator.

        Args:
            name: Registered validator name.
            value: The value to validate.
            data: Parameters and instance data for the validator.

        Returns:
            The validator's result, or a failing result naming the missing validator.
        """
        validator = self._validators.get(name)
        if validator is None:
            return ValidationResult.fail(f"Validator '{name}' not found")
        return await run_validator(validator, value, data)

    @staticmethod
    def combine(*validators: ValidatorFunction) -> ValidatorFunction:
        """Build a validator that runs each of ``validators`` and collects every error.

        Returns:
            An async validator; valid only when all inner validators pass.
        """

        async def combined(value: Any, data: dict[str, Any] | None = None) -> ValidationResult:
            result = ValidationResult.ok()
            for validator in validators:
                result = result.merge(await run_validator(validator, value, data))
            return result

        return combined

    def _register_builtins(self) -> None:
        self.register("required", _required)
        self.register("email", _email)
        self.register("url", _url)
        self.register("min_length", _min_length)
        self.register("max_length", _max_length)
        self.register("pattern", _pattern)
        self.register("range", _range)
