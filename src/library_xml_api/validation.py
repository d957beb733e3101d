"""Schema, business-rule and DTD validation of serialized collections.

:meth:`XmlValidator.validate` reads the whole document and gathers every
problem before deciding:

1. well-formedness (a syntax error is reported as a single issue),
2. the registered XSD via lxml's ``XMLSchema`` error log,
3. Schematron business rules registered for the same name, evaluated
   with XPath against each context node.

Only issues with severity ``error`` fail the document; rule reports with
a ``warn``/``info`` role are logged and otherwise ignored.

:meth:`XmlValidator.validate_with_dtd` wraps the document in a
synthesized ``<!DOCTYPE Root [ ... ]>`` internal subset built from the
registered DTD text and validates against that subset.

Both methods return ``True`` or raise :class:`ValidationError`; there is
no ``False`` result.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Dict, List, Optional, Union

from lxml import etree

from .codec import parse_xml, secure_parser
from .errors import ConfigurationError, InvalidValidationRequest, ValidationError, ValidationIssue
from .registry import SchemaRegistry
from .schematron_parser import SchematronRule

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")
_DOCTYPE = re.compile(r"<!DOCTYPE[^\[>]*(\[.*?\])?\s*>", re.DOTALL)


def _syntax_issue(error: etree.XMLSyntaxError, line_offset: int = 0) -> ValidationIssue:
    line, column = error.position
    return ValidationIssue(
        message=error.msg,
        line=line - line_offset if line else None,
        column=column or None,
        source="syntax",
    )


class XmlValidator:
    """Validate XML text against the schemas held by a :class:`SchemaRegistry`.

    lxml validators keep their error log on the object, so each schema is
    guarded by its own lock while it validates and its log is read.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    def validate(self, xml_text: Union[str, bytes, None], schema_name: str) -> bool:
        """Validate ``xml_text`` against the XSD (and rules) named ``schema_name``.

        Args:
            xml_text: Serialized document.
            schema_name: Registered name such as ``"Books"``.

        Returns:
            True when the document has no error-level issues.

        Raises:
            InvalidValidationRequest: If ``xml_text`` is empty or
                ``schema_name`` is not registered.
            ValidationError: If any syntax, schema or rule error was found.
        """
        if xml_text is None or not xml_text.strip():
            raise InvalidValidationRequest("XML content cannot be empty")
        schema = self.registry.get_schema(schema_name)
        if schema is None:
            raise InvalidValidationRequest(f"Schema '{schema_name}' not found")

        try:
            root = parse_xml(xml_text)
        except etree.XMLSyntaxError as e:
            raise self._error(schema_name, [_syntax_issue(e)]) from e

        issues: List[ValidationIssue] = []
        with self._lock_for(schema_name):
            if not schema.validate(root):
                for error in schema.error_log:
                    issues.append(ValidationIssue(error.message, error.line, error.column, source="xsd"))

        issues.extend(self._check_rules(root, self.registry.get_rules(schema_name)))

        errors = [issue for issue in issues if issue.severity == "error"]
        for warning in issues:
            if warning.severity != "error":
                logger.info(f"{schema_name} rule warning: {warning.render()}")
        if errors:
            raise self._error(schema_name, errors)
        return True

    def _check_rules(self, root: etree._Element, rules: List[SchematronRule]) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        tree = root.getroottree()
        for rule in rules:
            try:
                contexts = tree.xpath(rule.context)
                for node in contexts:
                    outcome = bool(node.xpath(rule.test))
                    failed = not outcome if rule.kind == "assert" else outcome
                    if failed:
                        issues.append(
                            ValidationIssue(
                                message=rule.message,
                                line=node.sourceline,
                                source="schematron",
                                severity="error" if rule.is_error else "warning",
                            )
                        )
            except etree.XPathError as e:
                raise ConfigurationError(f"Invalid rule expression {rule.test!r} in context {rule.context!r}: {e}") from e
        return issues

    def validate_with_dtd(self, xml_text: Union[str, bytes, None], dtd_name: str) -> bool:
        """Validate ``xml_text`` against the registered DTD ``dtd_name``.

        Any XML declaration or existing DOCTYPE in the input is replaced by
        an internal subset holding the DTD text. Reported line numbers refer
        to the caller's document, not the wrapped one.

        Raises:
            InvalidValidationRequest: If ``xml_text`` is empty or the DTD
                name is not registered.
            ValidationError: If the document is not well-formed or breaks
                the DTD.
        """
        if xml_text is None or not xml_text.strip():
            raise InvalidValidationRequest("XML content cannot be empty")
        dtd_text = self.registry.get_dtd(dtd_name)
        if dtd_text is None:
            raise InvalidValidationRequest(f"DTD '{dtd_name}' not found")
        if isinstance(xml_text, bytes):
            xml_text = xml_text.decode("utf-8")

        try:
            root_tag = parse_xml(xml_text).tag
        except etree.XMLSyntaxError as e:
            raise self._error(dtd_name, [_syntax_issue(e)], kind="DTD") from e

        body = _XML_DECLARATION.sub("", xml_text, count=1)
        body = _DOCTYPE.sub(lambda m: "\n" * m.group(0).count("\n"), body, count=1)
        prefix = f"<!DOCTYPE {root_tag} [\n{dtd_text.strip()}\n]>"
        offset = prefix.count("\n")
        wrapped = prefix + body

        try:
            tree = etree.fromstring(wrapped.encode("utf-8"), secure_parser(load_dtd=True)).getroottree()
        except etree.XMLSyntaxError as e:
            raise self._error(dtd_name, [_syntax_issue(e, offset)], kind="DTD") from e

        dtd = tree.docinfo.internalDTD
        issues: List[ValidationIssue] = []
        if not dtd.validate(tree):
            for error in dtd.error_log:
                line: Optional[int] = error.line - offset if error.line > offset else error.line
                issues.append(ValidationIssue(error.message, line, error.column, source="dtd"))
        if issues:
            raise self._error(dtd_name, issues, kind="DTD")
        return True

    def _error(self, name: str, issues: List[ValidationIssue], kind: str = "Schema") -> ValidationError:
        logger.warning(f"{kind} validation against '{name}' failed with {len(issues)} error(s)")
        return ValidationError(issues, summary=f"XML validation against {kind.lower()} '{name}' failed")
