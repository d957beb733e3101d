"""Exception taxonomy for the XML persistence layer.

Every failure raised by the registry, validator, codec, store and
transform engine derives from :class:`LibraryXMLError`. The classes map
onto two response categories at the HTTP boundary:

* caller errors (4xx): :class:`ValidationError`,
  :class:`MalformedDocumentError`, :class:`ArgumentError`,
  :class:`QueryError`, :class:`BusinessRuleError`,
  :class:`RecordNotFoundError`
* server errors (5xx): :class:`ConfigurationError`,
  :class:`TransformError`

Nothing in this package retries; all of these are deterministic
functions of the input.

Example::

    from library_xml_api.errors import ValidationError

    try:
        validator.validate(xml_text, "Books")
    except ValidationError as exc:
        for issue in exc.issues:
            print(issue.line, issue.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass
class ValidationIssue:
    """A single schema, rule or syntax problem found in a document.

    Attributes:
        message: Human readable description.
        line: 1-based line number when the parser reported one.
        column: 1-based column number when known.
        source: ``syntax``, ``xsd``, ``schematron`` or ``dtd``.
        severity: ``error`` or ``warning``.
    """

    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    source: str = "xsd"
    severity: str = "error"

    def render(self) -> str:
        text = self.message
        if self.line is not None:
            text += f" Line: {self.line}"
            if self.column is not None:
                text += f", Position: {self.column}"
        return text


class LibraryXMLError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(LibraryXMLError):
    """A schema, DTD, rule file or stylesheet is missing or unusable."""


class ValidationError(LibraryXMLError):
    """One or more schema violations were found.

    Carries every collected issue, not only the first one.
    """

    def __init__(self, issues: Iterable[ValidationIssue], summary: str = "XML validation failed") -> None:
        self.issues: List[ValidationIssue] = list(issues)
        self.summary = summary
        super().__init__(self._format())

    @property
    def messages(self) -> List[str]:
        return [issue.render() for issue in self.issues]

    def _format(self) -> str:
        if not self.issues:
            return self.summary
        return f"{self.summary}:\n" + "\n".join(self.messages)


class MalformedDocumentError(LibraryXMLError):
    """Input is not well-formed XML or does not have the expected shape."""

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        self.line = line
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)


class TransformError(LibraryXMLError):
    """XSLT loading or processing failed."""


class QueryError(LibraryXMLError):
    """XPath expression invalid or document unparseable."""


class ArgumentError(LibraryXMLError, ValueError):
    """A required argument was empty, None or unsafe."""


class InvalidValidationRequest(ArgumentError, ValidationError):
    """Validation was requested with no content or an unknown schema name."""

    def __init__(self, message: str) -> None:
        ValidationError.__init__(self, [ValidationIssue(message, source="request")], summary=message)

    def _format(self) -> str:
        return self.summary


class StylesheetNotFoundError(ConfigurationError, TransformError):
    """The named XSLT stylesheet does not exist in the transforms directory."""


class RecordNotFoundError(LibraryXMLError):
    """A record with the requested id does not exist in its collection."""

    def __init__(self, kind: str, record_id: int) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class BusinessRuleError(LibraryXMLError):
    """A request conflicts with the current state of the collections."""
