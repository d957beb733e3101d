"""Extract Schematron assertions into normalized business rules.

XSD 1.0 cannot relate two fields of the same record (for example
``AvailableCopies <= TotalCopies``). Those constraints live in an ISO
Schematron file next to each XSD; this module reads the file and turns
every ``sch:assert`` / ``sch:report`` into a :class:`SchematronRule` that
:class:`~library_xml_api.validation.XmlValidator` evaluates with XPath.

Severity mapping:
* If an ``@role`` is absent on ``sch:assert`` nodes we default to ``error``
* If an ``@role`` is absent on ``sch:report`` nodes we default to ``warn``

Example:
        from pathlib import Path
        from library_xml_api.schematron_parser import SchematronParser

        for rule in SchematronParser(Path("Data/Schemas/bookschema.sch")).iter_rules():
                print(rule.context, rule.test, rule.message)

Limitations:
* ``sch:let``, abstract patterns and phases are not supported.
* Rule contexts are used verbatim as XPath 1.0 expressions.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from .errors import ConfigurationError

SCH_NS = {"sch": "http://purl.oclc.org/dsdl/schematron"}

# An assert without @role fails the document; a report only warns.
DEFAULT_ROLES = (("assert", "ERROR"), ("report", "WARN"))


@dataclass
class SchematronRule:
    context: str
    message: str
    test: str
    severity: str
    kind: str = "assert"

    @property
    def is_error(self) -> bool:
        return self.severity in ("error", "fatal")


class SchematronParser:
    """Parse a Schematron file and expose its rules.

    Args:
        schematron_path: Path to the Schematron XML file.

    Raises:
        ConfigurationError: If the file is missing or not well-formed.
    """

    def __init__(self, schematron_path: Path) -> None:
        self.path = Path(schematron_path)
        if not self.path.exists():
            raise ConfigurationError(f"Schematron file not found: {self.path}")
        try:
            self.tree = ET.parse(self.path)
        except ET.ParseError as e:
            raise ConfigurationError(f"Schematron file {self.path} is not well-formed: {e}") from e
        self.root = self.tree.getroot()

    def iter_rules(self) -> Iterable[SchematronRule]:
        """Yield every assertion of each rule, then its reports.

        Messages are whitespace-normalized; severity is lower-cased. Rules
        without a ``context`` are skipped.
        """
        for rule in self.root.iterfind("sch:pattern/sch:rule", namespaces=SCH_NS):
            context = rule.get("context")
            if not context:
                continue
            for kind, default_role in DEFAULT_ROLES:
                for node in rule.iterfind(f"sch:{kind}", namespaces=SCH_NS):
                    yield SchematronRule(
                        context=context,
                        message=_normalize_text(node),
                        test=node.get("test", ""),
                        severity=node.get("role", default_role).lower(),
                        kind=kind,
                    )


def _normalize_text(node: ET.Element) -> str:
    return " ".join("".join(node.itertext()).split())


def load_rules(schematron_path: Path) -> List[SchematronRule]:
    """Parse ``schematron_path`` and return its rules as a list."""
    return list(SchematronParser(schematron_path).iter_rules())
