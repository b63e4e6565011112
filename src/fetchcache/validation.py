"""Validation hooks run against a download before it is promoted.

A validator receives the path of the freshly downloaded temp file and
decides whether the content may replace the cached copy. Expected
rejections are reported by returning :meth:`ValidationResult.reject`;
returning ``None`` or :meth:`ValidationResult.accept` lets the download
through. A validator may also raise :class:`~fetchcache.exceptions.ValidationError`
directly, and any other exception it raises is wrapped into one by
:func:`run_validator`.

Example::

    def not_empty(path: Path) -> ValidationResult:
        if path.stat().st_size == 0:
            return ValidationResult.reject("Empty response")
        return ValidationResult.accept()
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from fetchcache.exceptions import ValidationError


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation hook.

    Attributes:
        ok: Whether the download may be promoted.
        message: Reason for a rejection.
        code: Upstream error code for a rejection, ``0`` when unknown.
    """

    ok: bool
    message: str = ""
    code: int = 0

    @classmethod
    def accept(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def reject(cls, message: str, code: int = 0) -> ValidationResult:
        return cls(ok=False, message=message, code=code)


Validator = Callable[[Path], Optional[ValidationResult]]


def run_validator(validator: Optional[Validator], path: Path) -> None:
    """Run *validator* against *path*, raising on rejection.

    Raises:
        ValidationError: If the validator rejects the file or fails.
    """
    if validator is None:
        return
    try:
        result = validator(path)
    except ValidationError:
        raise
    except Exception as exc:
        raise ValidationError(f"Validator failed on {path.name}: {exc}") from exc
    if result is not None and not result.ok:
        raise ValidationError(result.message or "Download rejected", code=result.code)


def chain(*validators: Validator) -> Validator:
    """Combine validators; the first rejection wins."""

    def combined(path: Path) -> Optional[ValidationResult]:
        for validator in validators:
            result = validator(path)
            if result is not None and not result.ok:
                return result
        return ValidationResult.accept()

    return combined


def xml_error_validator(root: str = "eveapi", error_tag: str = "error") -> Validator:
    """Reject XML payloads that are malformed or report an embedded error.

    Checks, in order: the file parses as XML, the document root is named
    *root*, and there is no ``<error code="...">message</error>`` child.

    Args:
        root: Expected document root element name.
        error_tag: Name of the error element below the root.
    """

    def validate(path: Path) -> ValidationResult:
        try:
            doc = ET.parse(path).getroot()
        except ET.ParseError as exc:
            return ValidationResult.reject(f"Malformed XML: {exc}")

        error = doc.find(error_tag)
        if error is not None:
            try:
                code = int(error.get("code", "0"))
            except ValueError:
                code = 0
            return ValidationResult.reject((error.text or "").strip() or "Upstream error", code)

        if doc.tag != root:
            return ValidationResult.reject(f"No valid {root} XML found in response.")
        return ValidationResult.accept()

    return validate
