"""Element-based XML mapping for the record collections.

Layout (one document per collection)::

    <?xml version='1.0' encoding='utf-8'?>
    <Books>
      <Book Id="1">
        <ISBN>978-0-441-17271-9</ISBN>
        <Title>Dune</Title>
        ...
      </Book>
    </Books>

The numeric id is the ``Id`` attribute; every other field is a child
element in the order given by :data:`FIELD_LAYOUT`. Dates are written as
``YYYY-MM-DD``. ``Borrowing.ReturnDate`` is omitted when empty; on decode
an ``xsi:nil="true"`` element is accepted as empty too.

Decoding is strict: an unknown root, a foreign record element, an unknown
or repeated field, a missing required field, or a value that is not an
integer/ISO date all raise :class:`MalformedDocumentError`.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional, Tuple, Type, Union

from lxml import etree

from .errors import ArgumentError, MalformedDocumentError
from .models import (
    COLLECTION_TYPES,
    Book,
    Borrowing,
    LibraryReport,
    Member,
    Record,
    RecordCollection,
    User,
)

XSI_NIL = "{http://www.w3.org/2001/XMLSchema-instance}nil"

# (element name, attribute name, kind); kind is str, int, date or date?
FieldSpec = Tuple[str, str, str]

FIELD_LAYOUT: Dict[Type[Record], Tuple[FieldSpec, ...]] = {
    Book: (
        ("ISBN", "isbn", "str"),
        ("Title", "title", "str"),
        ("Author", "author", "str"),
        ("Publisher", "publisher", "str"),
        ("PublicationYear", "publication_year", "int"),
        ("Genre", "genre", "str"),
        ("AvailableCopies", "available_copies", "int"),
        ("TotalCopies", "total_copies", "int"),
    ),
    Member: (
        ("FirstName", "first_name", "str"),
        ("LastName", "last_name", "str"),
        ("Email", "email", "str"),
        ("PhoneNumber", "phone_number", "str"),
        ("Address", "address", "str"),
        ("MembershipDate", "membership_date", "date"),
        ("Status", "status", "str"),
    ),
    Borrowing: (
        ("BookId", "book_id", "int"),
        ("MemberId", "member_id", "int"),
        ("BorrowDate", "borrow_date", "date"),
        ("DueDate", "due_date", "date"),
        ("ReturnDate", "return_date", "date?"),
        ("Status", "status", "str"),
    ),
    User: (
        ("Username", "username", "str"),
        ("PasswordHash", "password_hash", "str"),
        ("Role", "role", "str"),
    ),
}


def secure_parser(**kwargs: Any) -> etree.XMLParser:
    """Return an lxml parser that never expands entities or touches the network."""
    options = {"resolve_entities": False, "no_network": True, "huge_tree": False}
    options.update(kwargs)
    return etree.XMLParser(**options)


def parse_xml(xml_text: Union[str, bytes], parser: Optional[etree.XMLParser] = None) -> etree._Element:
    """Parse text into an element, raising lxml's ``XMLSyntaxError`` on bad input.

    Text is always handed to lxml as UTF-8 bytes: lxml refuses ``str``
    input that carries an encoding declaration.
    """
    data = xml_text.encode("utf-8") if isinstance(xml_text, str) else xml_text
    return etree.fromstring(data, parser or secure_parser())


def _format_value(value: Any, kind: str) -> str:
    if kind in ("date", "date?"):
        return value.isoformat()
    return str(value)


def _parse_value(text: Optional[str], kind: str, tag: str, line: Optional[int]) -> Any:
    if kind == "str":
        return text or ""
    raw = (text or "").strip()
    if kind == "int":
        try:
            return int(raw)
        except ValueError:
            raise MalformedDocumentError(f"{tag} must be an integer, got {raw!r}", line=line) from None
    if kind == "date?" and not raw:
        return None
    # Values with a time-of-day part are truncated to the day.
    if len(raw) > 10 and raw[10] in "T ":
        raw = raw[:10]
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise MalformedDocumentError(f"{tag} must be a YYYY-MM-DD date, got {raw!r}", line=line) from None


class XmlCodec:
    """Convert collections to and from XML text.

    The codec is stateless; one instance can be shared by every caller.
    """

    def encode(self, obj: Union[RecordCollection, LibraryReport]) -> str:
        """Serialize a collection or a :class:`LibraryReport` to XML text.

        Raises:
            ArgumentError: If ``obj`` is not a known collection or report,
                or a field holds text XML cannot represent.
        """
        if isinstance(obj, LibraryReport):
            root = self._report_element(obj)
        elif isinstance(obj, RecordCollection):
            root = self._collection_element(obj)
        else:
            raise ArgumentError(f"Cannot encode object of type {type(obj).__name__}")
        return etree.tostring(root, xml_declaration=True, encoding="utf-8", pretty_print=True).decode("utf-8")

    def _collection_element(self, collection: RecordCollection) -> etree._Element:
        root = etree.Element(collection.root_tag)
        layout = FIELD_LAYOUT[collection.record_type]
        for record in collection:
            record_el = etree.SubElement(root, collection.record_tag, Id=str(record.id))
            for tag, attr, kind in layout:
                value = getattr(record, attr)
                if value is None:
                    continue
                try:
                    etree.SubElement(record_el, tag).text = _format_value(value, kind)
                except ValueError as e:
                    # lxml rejects control characters and other non-XML text.
                    raise ArgumentError(
                        f"{collection.record_tag} {record.id}: {tag} cannot be stored as XML: {e}"
                    ) from e
        return root

    def _report_element(self, report: LibraryReport) -> etree._Element:
        root = etree.Element("LibraryReport")
        etree.SubElement(root, "GeneratedDate").text = report.generated_at.strftime("%Y-%m-%d %H:%M:%S")
        for tag, value in (
            ("TotalBooks", report.total_books),
            ("TotalMembers", report.total_members),
            ("ActiveBorrowings", report.active_borrowings),
            ("AvailableBooks", report.available_books),
            ("OutOfStockBooks", report.out_of_stock_books),
            ("OverdueBorrowings", report.overdue_borrowings),
        ):
            etree.SubElement(root, tag).text = str(value)
        for group_tag, item_tag, items in (
            ("PopularGenres", "Genre", report.popular_genres),
            ("PopularAuthors", "Author", report.popular_authors),
        ):
            group = etree.SubElement(root, group_tag)
            for item in items:
                item_el = etree.SubElement(group, item_tag)
                etree.SubElement(item_el, "Name").text = item.name
                etree.SubElement(item_el, "Count").text = str(item.count)
        return root

    def decode(
        self,
        xml_text: Union[str, bytes],
        expected: Optional[Type[RecordCollection]] = None,
    ) -> RecordCollection:
        """Parse XML text back into a typed collection.

        Args:
            xml_text: Serialized collection.
            expected: Collection class the root must match. When omitted
                the class is chosen from the root element name.

        Raises:
            MalformedDocumentError: If the text is not well-formed or does
                not have the expected root/record shape.
        """
        if xml_text is None or not xml_text.strip():
            raise MalformedDocumentError("Document is empty")
        try:
            root = parse_xml(xml_text)
        except etree.XMLSyntaxError as e:
            raise MalformedDocumentError(f"Document is not well-formed: {e.msg}", line=e.lineno) from e

        collection_cls = COLLECTION_TYPES.get(root.tag)
        if collection_cls is None:
            raise MalformedDocumentError(f"Unknown root element <{root.tag}>", line=root.sourceline)
        if expected is not None and collection_cls is not expected:
            raise MalformedDocumentError(
                f"Expected root element <{expected.root_tag}>, found <{root.tag}>", line=root.sourceline
            )

        records = [self._decode_record(collection_cls, el) for el in root if isinstance(el.tag, str)]
        return collection_cls(items=records)

    def _decode_record(self, collection_cls: Type[RecordCollection], element: etree._Element) -> Record:
        line = element.sourceline
        if element.tag != collection_cls.record_tag:
            raise MalformedDocumentError(
                f"Unexpected element <{element.tag}> in <{collection_cls.root_tag}>", line=line
            )
        raw_id = element.get("Id")
        if raw_id is None:
            raise MalformedDocumentError(f"<{element.tag}> is missing the Id attribute", line=line)
        try:
            record_id = int(raw_id.strip())
        except ValueError:
            raise MalformedDocumentError(f"Id must be an integer, got {raw_id!r}", line=line) from None

        layout = {tag: (attr, kind) for tag, attr, kind in FIELD_LAYOUT[collection_cls.record_type]}
        values: Dict[str, Any] = {}
        for child in element:
            if not isinstance(child.tag, str):
                continue
            if child.tag not in layout:
                raise MalformedDocumentError(f"Unknown field <{child.tag}> in <{element.tag}>", line=child.sourceline)
            attr, kind = layout[child.tag]
            if attr in values:
                raise MalformedDocumentError(f"Field <{child.tag}> repeated in <{element.tag}>", line=child.sourceline)
            if kind == "date?" and child.get(XSI_NIL) in ("true", "1"):
                values[attr] = None
                continue
            values[attr] = _parse_value(child.text, kind, child.tag, child.sourceline)

        for tag, (attr, kind) in layout.items():
            if attr not in values:
                if kind == "date?":
                    values[attr] = None
                else:
                    raise MalformedDocumentError(f"<{element.tag}> is missing required field <{tag}>", line=line)

        return collection_cls.record_type(id=record_id, **values)


_default_codec = XmlCodec()


def encode(obj: Union[RecordCollection, LibraryReport]) -> str:
    """Module-level shortcut for :meth:`XmlCodec.encode`."""
    return _default_codec.encode(obj)


def decode(xml_text: Union[str, bytes], expected: Optional[Type[RecordCollection]] = None) -> RecordCollection:
    """Module-level shortcut for :meth:`XmlCodec.decode`."""
    return _default_codec.decode(xml_text, expected)

