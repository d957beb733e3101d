"""Startup registry of XSD schemas, Schematron rules and DTD fragments.

The registry loads a fixed set of logical collection names from the data
root once, at construction. A missing XSD or DTD is a startup failure
(:class:`~library_xml_api.errors.ConfigurationError`), not something
callers recover from at request time.

Layout under the data root::

    Schemas/bookschema.xsd        Books
    Schemas/memberschema.xsd      Members
    Schemas/borrowingschema.xsd   Borrowings
    Schemas/<same stem>.sch       optional business rules per schema
    DTDs/books.dtd                Books
    DTDs/members.dtd              Members
    DTDs/borrowings.dtd           Borrowings

Users are persisted but have no registered schema.

Example:
    >>> registry = SchemaRegistry(Path("Data"))
    >>> registry.get_schema("Books") is not None
    True
    >>> registry.get_dtd("Unknown") is None
    True
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from lxml import etree

from .config import Settings
from .errors import ConfigurationError
from .schematron_parser import SchematronRule, load_rules

logger = logging.getLogger(__name__)

SCHEMA_FILES: Dict[str, str] = {
    "Books": "bookschema.xsd",
    "Members": "memberschema.xsd",
    "Borrowings": "borrowingschema.xsd",
}

DTD_FILES: Dict[str, str] = {
    "Books": "books.dtd",
    "Members": "members.dtd",
    "Borrowings": "borrowings.dtd",
}


class SchemaRegistry:
    """Lookup of compiled XSD schemas, rule sets and raw DTD text by name.

    Args:
        source: A :class:`Settings` instance or a data root path.

    Raises:
        ConfigurationError: If any expected XSD/DTD is missing or invalid,
            or a present rule file cannot be parsed.
    """

    def __init__(self, source: Union[Settings, Path, str]) -> None:
        settings = source if isinstance(source, Settings) else Settings(data_dir=Path(source))
        settings.ensure_directories()
        self.schemas_dir = settings.schemas_dir
        self.dtds_dir = settings.dtds_dir

        self._schemas: Dict[str, etree.XMLSchema] = {}
        self._rules: Dict[str, List[SchematronRule]] = {}
        self._dtds: Dict[str, str] = {}

        for name, file_name in SCHEMA_FILES.items():
            self._schemas[name] = self._load_schema(file_name)
            self._rules[name] = self._load_rules(file_name)
        for name, file_name in DTD_FILES.items():
            self._dtds[name] = self._load_dtd(file_name)

        logger.info(
            f"Loaded {len(self._schemas)} schemas, {len(self._dtds)} DTDs and "
            f"{sum(len(r) for r in self._rules.values())} business rules"
        )

    def _load_schema(self, file_name: str) -> etree.XMLSchema:
        path = self.schemas_dir / file_name
        if not path.exists():
            raise ConfigurationError(f"Schema file not found: {path}")
        try:
            return etree.XMLSchema(etree.parse(str(path)))
        except (etree.XMLSyntaxError, etree.XMLSchemaParseError) as e:
            raise ConfigurationError(f"Schema file {path} could not be loaded: {e}") from e

    def _load_rules(self, schema_file: str) -> List[SchematronRule]:
        path = self.schemas_dir / (Path(schema_file).stem + ".sch")
        if not path.exists():
            return []
        return load_rules(path)

    def _load_dtd(self, file_name: str) -> str:
        path = self.dtds_dir / file_name
        if not path.exists():
            raise ConfigurationError(f"DTD file not found: {path}")
        text = path.read_text(encoding="utf-8")
        try:
            etree.DTD(io.StringIO(text))
        except etree.DTDParseError as e:
            raise ConfigurationError(f"DTD file {path} could not be parsed: {e}") from e
        return text

    def get_schema(self, name: str) -> Optional[etree.XMLSchema]:
        return self._schemas.get(name)

    def get_rules(self, name: str) -> List[SchematronRule]:
        return list(self._rules.get(name, []))

    def get_dtd(self, name: str) -> Optional[str]:
        return self._dtds.get(name)

    @property
    def schema_names(self) -> List[str]:
        return sorted(self._schemas)

    @property
    def dtd_names(self) -> List[str]:
        return sorted(self._dtds)
