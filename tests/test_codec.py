"""Tests for the XML collection codec."""

from datetime import date

import pytest
from lxml import etree

from library_xml_api.codec import XmlCodec, decode, encode
from library_xml_api.errors import ArgumentError, MalformedDocumentError
from library_xml_api.models import (
    Book,
    Books,
    Borrowing,
    Borrowings,
    LibraryReport,
    Member,
    Members,
    NameCount,
    User,
    Users,
)


def test_round_trip_every_collection(sample_books):
    codec = XmlCodec()
    members = Members(items=[Member(id=3, first_name="Ada", last_name="Lovelace", email="ada@example.org",
                                    membership_date=date(2023, 12, 31), status="Suspended")])
    borrowings = Borrowings(
        items=[
            Borrowing(id=1, book_id=1, member_id=3, borrow_date=date(2024, 3, 1), due_date=date(2024, 3, 15)),
            Borrowing(id=2, book_id=2, member_id=3, borrow_date=date(2024, 3, 1), due_date=date(2024, 3, 15),
                      return_date=date(2024, 3, 4), status="Returned"),
        ]
    )
    users = Users(items=[User(id=1, username="admin", password_hash="abc=", role="Admin")])

    for collection in (sample_books, members, borrowings, users):
        assert codec.decode(codec.encode(collection)) == collection


def test_round_trip_preserves_whitespace_and_markup_characters():
    books = Books(items=[Book(id=7, isbn="0306406152", title="  <Fish> & Chips ", author="O'Brien \"Jr\"")])
    assert decode(encode(books)) == books


def test_element_layout(sample_books):
    root = etree.fromstring(encode(sample_books).encode("utf-8"))

    assert root.tag == "Books"
    first = root[0]
    assert first.tag == "Book"
    assert first.get("Id") == "1"
    assert [child.tag for child in first] == [
        "ISBN",
        "Title",
        "Author",
        "Publisher",
        "PublicationYear",
        "Genre",
        "AvailableCopies",
        "TotalCopies",
    ]


def test_encode_has_declaration_and_dates_without_time():
    borrowings = Borrowings(
        items=[Borrowing(id=1, book_id=1, member_id=1, borrow_date=date(2024, 1, 5), due_date=date(2024, 1, 19))]
    )
    text = encode(borrowings)

    assert text.startswith("<?xml")
    assert "<BorrowDate>2024-01-05</BorrowDate>" in text
    assert "ReturnDate" not in text


def test_decode_accepts_nil_return_date_and_datetime_values():
    text = """<?xml version="1.0" encoding="utf-8"?>
<Borrowings xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
  <Borrowing Id="4">
    <BookId>1</BookId>
    <MemberId>2</MemberId>
    <BorrowDate>2024-03-01T09:30:00</BorrowDate>
    <DueDate>2024-03-15T00:00:00Z</DueDate>
    <ReturnDate xsi:nil="true" />
    <Status>Borrowed</Status>
  </Borrowing>
</Borrowings>"""
    borrowings = decode(text, Borrowings)

    borrowing = borrowings.find(4)
    assert borrowing.return_date is None
    assert borrowing.borrow_date == date(2024, 3, 1)
    assert borrowing.due_date == date(2024, 3, 15)


def test_decode_empty_collection():
    assert decode("<Members/>") == Members()


def test_encode_report():
    report = LibraryReport(total_books=3, popular_genres=[NameCount("Fantasy", 2)])
    root = etree.fromstring(encode(report).encode("utf-8"))

    assert root.tag == "LibraryReport"
    assert root.findtext("TotalBooks") == "3"
    assert root.findtext("PopularGenres/Genre/Name") == "Fantasy"
    assert root.findtext("PopularGenres/Genre/Count") == "2"


def test_encode_rejects_unknown_objects():
    with pytest.raises(ArgumentError):
        encode(["not", "a", "collection"])


@pytest.mark.parametrize(
    "text",
    [
        "",
        "<Books><Book Id='1'>",
        "<Shelves/>",
        "<Books><Member Id='1'/></Books>",
        "<Books><Book><ISBN>1</ISBN></Book></Books>",
        "<Books><Book Id='x'/></Books>",
    ],
)
def test_decode_rejects_malformed_documents(text):
    with pytest.raises(MalformedDocumentError):
        decode(text)


def test_decode_rejects_wrong_root_for_expected_type(sample_books):
    with pytest.raises(MalformedDocumentError, match="Expected root element <Members>"):
        decode(encode(sample_books), Members)


def test_decode_rejects_bad_field_values(sample_books):
    text = encode(sample_books).replace("<TotalCopies>2</TotalCopies>", "<TotalCopies>two</TotalCopies>", 1)
    with pytest.raises(MalformedDocumentError, match="TotalCopies must be an integer"):
        decode(text)

    text = encode(sample_books).replace("<Genre>Testing</Genre>", "<Genre>Testing</Genre><Shelf>B</Shelf>")
    with pytest.raises(MalformedDocumentError, match="Unknown field <Shelf>"):
        decode(text)

    text = encode(sample_books).replace("<Title>Dune</Title>", "")
    with pytest.raises(MalformedDocumentError, match="missing required field <Title>"):
        decode(text)


def test_malformed_error_reports_line():
    with pytest.raises(MalformedDocumentError) as exc_info:
        decode("<Books>\n  <Book Id='1'>\n</Books>")
    assert exc_info.value.line is not None


def test_encode_rejects_text_xml_cannot_hold():
    books = Books(items=[Book(id=1, isbn="0306406152", title="Bad\x01Title", author="A")])
    with pytest.raises(ArgumentError, match="Title"):
        encode(books)
