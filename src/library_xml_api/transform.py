"""XSLT rendering and XPath queries over serialized collections.

Stylesheets live in ``<data root>/Transforms`` and are compiled on first
use, then reused until the file changes on disk. Both operations work on
XML text, independent of the store's write path.

Example::

    engine = TransformEngine(settings)
    html = engine.transform_to_html(books_xml, "books-to-html")
    engine.query_xpath(books_xml, "//Book[Author='Test Author']/Title")
    # -> ['Test Book']

Security:
    * Input is parsed with entity resolution and network access disabled.
    * Stylesheets run with ``XSLTAccessControl.DENY_ALL`` (no file or
      network reads/writes from ``document()`` or extensions).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from lxml import etree

from .codec import parse_xml, secure_parser
from .config import Settings
from .errors import (
    ArgumentError,
    LibraryXMLError,
    QueryError,
    StylesheetNotFoundError,
    TransformError,
)
from .validation import XmlValidator

logger = logging.getLogger(__name__)

STYLESHEET_SUFFIX = ".xslt"
BOOKS_STYLESHEET = "books-to-html"
MEMBERS_STYLESHEET = "members-to-html"
REPORT_STYLESHEET = "library-report"


@dataclass
class _CompiledStylesheet:
    file_name: str
    transform: etree.XSLT
    mtime: float
    lock: threading.Lock


def _stringify(value: Any) -> str:
    """Render one XPath result item as its string value."""
    if isinstance(value, etree._Element):
        if not isinstance(value.tag, str):
            return value.text or ""
        return "".join(value.itertext())
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class TransformEngine:
    """Apply named XSLT stylesheets and evaluate XPath expressions.

    Args:
        source: A :class:`Settings` instance or a data root path.
        validator: Used by :meth:`validate_with_dtd`. When omitted the
            permissive DTD check always answers False.
    """

    def __init__(
        self,
        source: Union[Settings, Path, str],
        validator: Optional[XmlValidator] = None,
    ) -> None:
        settings = source if isinstance(source, Settings) else Settings(data_dir=Path(source))
        self.transforms_dir = settings.transforms_dir
        self.validator = validator
        self._stylesheets: Dict[str, _CompiledStylesheet] = {}
        self._lock = threading.Lock()

    def _stylesheet_path(self, stylesheet_name: str) -> Path:
        if not stylesheet_name or not stylesheet_name.strip():
            raise ArgumentError("Stylesheet name cannot be empty")
        file_name = stylesheet_name if stylesheet_name.endswith(STYLESHEET_SUFFIX) else stylesheet_name + STYLESHEET_SUFFIX
        if file_name != Path(file_name).name:
            raise ArgumentError(f"Stylesheet name must not contain path components: {stylesheet_name!r}")
        return self.transforms_dir / file_name

    def load_stylesheet(self, stylesheet_name: str) -> _CompiledStylesheet:
        """Compile (or reuse) the stylesheet named ``stylesheet_name``.

        Raises:
            StylesheetNotFoundError: If the ``.xslt`` file does not exist.
            TransformError: If the stylesheet is not valid XSLT.
        """
        path = self._stylesheet_path(stylesheet_name)
        if not path.exists():
            logger.error(f"XSLT stylesheet not found: {path}")
            raise StylesheetNotFoundError(f"XSLT stylesheet not found: {path}")

        mtime = path.stat().st_mtime
        with self._lock:
            compiled = self._stylesheets.get(path.name)
            if compiled is not None and compiled.mtime == mtime:
                return compiled

            logger.info(f"Loading XSLT stylesheet: {path}")
            try:
                xslt_doc = etree.parse(str(path), secure_parser())
                transform = etree.XSLT(xslt_doc, access_control=etree.XSLTAccessControl.DENY_ALL)
            except (etree.XMLSyntaxError, etree.XSLTParseError) as e:
                logger.error(f"Invalid XSLT stylesheet {path}: {e}")
                raise TransformError(f"Invalid XSLT stylesheet {path.name}: {e}") from e

            compiled = _CompiledStylesheet(file_name=path.name, transform=transform, mtime=mtime, lock=threading.Lock())
            self._stylesheets[path.name] = compiled
            return compiled

    def _discard(self, compiled: _CompiledStylesheet) -> None:
        with self._lock:
            if self._stylesheets.get(compiled.file_name) is compiled:
                del self._stylesheets[compiled.file_name]

    def transform_to_html(
        self,
        xml_text: Union[str, bytes, None],
        stylesheet_name: str,
        timeout: Optional[float] = None,
        **params: Any,
    ) -> str:
        """Apply a stylesheet to ``xml_text`` and return the serialized result.

        Args:
            xml_text: Source document.
            stylesheet_name: Stylesheet file name, with or without ``.xslt``.
            timeout: Optional limit in seconds on the transformation. A
                transform that times out keeps running in its worker thread
                until it finishes; the stylesheet is recompiled for later calls.
            **params: String parameters passed to the stylesheet.

        Raises:
            ArgumentError: If ``xml_text`` is empty.
            StylesheetNotFoundError: If the stylesheet is missing.
            TransformError: If the source is not well-formed, the
                stylesheet fails, or the timeout elapses.
        """
        if xml_text is None or not xml_text.strip():
            raise ArgumentError("XML content cannot be empty")
        compiled = self.load_stylesheet(stylesheet_name)

        try:
            source = parse_xml(xml_text)
        except etree.XMLSyntaxError as e:
            logger.error(f"Cannot transform malformed XML: {e}")
            raise TransformError(f"Source XML is not well-formed: {e}") from e

        xslt_params = {k: etree.XSLT.strparam(str(v)) for k, v in params.items()}

        def run() -> str:
            with compiled.lock:
                try:
                    result = compiled.transform(source, **xslt_params)
                except etree.XSLTApplyError as e:
                    logger.error(f"XSLT transformation failed: {e}")
                    logger.error(f"Error log: {compiled.transform.error_log}")
                    raise TransformError(f"XSLT transformation failed: {e}") from e
                for entry in compiled.transform.error_log:
                    logger.warning(f"XSLT message: {entry}")
            return str(result)

        if timeout is None:
            return run()

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            return executor.submit(run).result(timeout=timeout)
        except FutureTimeout:
            logger.error(f"XSLT transformation with {stylesheet_name} exceeded {timeout}s")
            # The abandoned worker keeps this stylesheet's lock until it
            # finishes; later calls compile a fresh copy instead of waiting.
            self._discard(compiled)
            raise TransformError(f"XSLT transformation exceeded {timeout} seconds") from None
        finally:
            executor.shutdown(wait=False)

    def query_xpath(
        self,
        xml_text: Union[str, bytes, None],
        expression: Optional[str],
        **variables: Any,
    ) -> List[str]:
        """Evaluate ``expression`` and return the string value of each match.

        Node-set results come back in document order. A scalar result
        (number, string, boolean) is returned as a one-item list.
        ``variables`` are bound as XPath ``$name`` variables.

        Raises:
            ArgumentError: If ``xml_text`` or ``expression`` is empty.
            QueryError: If the document does not parse or the expression is
                not valid XPath.
        """
        if xml_text is None or not xml_text.strip():
            raise ArgumentError("XML content cannot be empty")
        if expression is None or not expression.strip():
            raise ArgumentError("XPath expression cannot be empty")

        try:
            root = parse_xml(xml_text)
        except etree.XMLSyntaxError as e:
            logger.error(f"Cannot query malformed XML: {e}")
            raise QueryError(f"Document is not well-formed: {e}") from e

        try:
            result = root.getroottree().xpath(expression, **variables)
        except etree.XPathError as e:
            logger.error(f"Error executing XPath query {expression!r}: {e}")
            raise QueryError(f"Invalid XPath expression {expression!r}: {e}") from e

        if isinstance(result, list):
            return [_stringify(item) for item in result]
        return [_stringify(result)]

    def books_by_author(self, xml_text: str, author: str) -> List[str]:
        return self.query_xpath(xml_text, "//Book[Author=$author]/Title", author=author)

    def books_by_genre(self, xml_text: str, genre: str) -> List[str]:
        return self.query_xpath(xml_text, "//Book[Genre=$genre]/Title", genre=genre)

    def available_books(self, xml_text: str) -> List[str]:
        return self.query_xpath(xml_text, "//Book[AvailableCopies > 0]/Title")

    def out_of_stock_books(self, xml_text: str) -> List[str]:
        return self.query_xpath(xml_text, "//Book[AvailableCopies = 0]/Title")

    def validate_with_dtd(self, xml_text: Union[str, bytes, None], name: str = "Books") -> bool:
        """Permissive DTD check: True if valid, False on any failure.

        Unlike :meth:`XmlValidator.validate_with_dtd` this never raises;
        the failure reason is logged instead.
        """
        if self.validator is None:
            logger.warning("DTD check requested but no validator is configured")
            return False
        try:
            return self.validator.validate_with_dtd(xml_text, name)
        except LibraryXMLError as e:
            logger.error(f"DTD validation failed: {e}")
            return False

