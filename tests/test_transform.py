"""Tests for XSLT rendering and XPath queries."""

import pytest

from library_xml_api.codec import encode
from library_xml_api.errors import (
    ArgumentError,
    ConfigurationError,
    QueryError,
    StylesheetNotFoundError,
    TransformError,
)
from library_xml_api.models import Books
from library_xml_api.transform import BOOKS_STYLESHEET, TransformEngine


@pytest.fixture
def books_xml(sample_books):
    return encode(sample_books)


def test_xpath_returns_string_values(engine, books_xml):
    assert engine.query_xpath(books_xml, "//Book[Author='Test Author']/Title") == ["Test Book"]
    assert engine.query_xpath(books_xml, "//Book/@Id") == ["1", "2"]
    assert engine.query_xpath(books_xml, "//Book[Author='Nobody']/Title") == []


def test_xpath_scalar_results(engine, books_xml):
    assert engine.query_xpath(books_xml, "count(//Book)") == ["2"]
    assert engine.query_xpath(books_xml, "sum(//TotalCopies) > 2") == ["true"]
    assert engine.query_xpath(books_xml, "string(//Book[1]/Genre)") == ["Science Fiction"]


def test_xpath_variables(engine, books_xml):
    result = engine.query_xpath(books_xml, "//Book[Author=$name]/ISBN", name="Test Author")
    assert result == ["0-306-40615-2"]


def test_xpath_helpers(engine, make_book):
    books_xml = encode(
        Books(
            items=[
                make_book(id=1, title="Dune"),
                make_book(id=2, title="Dubliners", author="James O'Brien", genre="Fiction", available_copies=0),
            ]
        )
    )
    assert engine.books_by_author(books_xml, "James O'Brien") == ["Dubliners"]
    assert engine.books_by_genre(books_xml, "Science Fiction") == ["Dune"]
    assert engine.available_books(books_xml) == ["Dune"]
    assert engine.out_of_stock_books(books_xml) == ["Dubliners"]


@pytest.mark.parametrize("xml_text, expression", [("", "//Book"), (None, "//Book"), ("<Books/>", ""), ("<Books/>", None)])
def test_xpath_rejects_empty_arguments(engine, xml_text, expression):
    with pytest.raises(ArgumentError):
        engine.query_xpath(xml_text, expression)


def test_xpath_errors(engine, books_xml):
    with pytest.raises(QueryError):
        engine.query_xpath(books_xml, "//Book[")
    with pytest.raises(QueryError):
        engine.query_xpath("<Books><Book>", "//Book")


def test_transform_books_to_html(engine, books_xml):
    html = engine.transform_to_html(books_xml, BOOKS_STYLESHEET)

    assert "<h1>Library Books</h1>" in html
    assert "Test Book" in html
    assert "Dune" in html


def test_transform_accepts_suffix_and_timeout(engine, books_xml):
    html = engine.transform_to_html(books_xml, "books-to-html.xslt", timeout=30)
    assert "Library Books" in html


def test_compiled_stylesheet_is_reused(engine):
    first = engine.load_stylesheet(BOOKS_STYLESHEET)
    assert engine.load_stylesheet("books-to-html.xslt") is first


def test_missing_stylesheet(engine, books_xml):
    with pytest.raises(StylesheetNotFoundError) as exc_info:
        engine.transform_to_html(books_xml, "does-not-exist")

    assert isinstance(exc_info.value, ConfigurationError)
    assert isinstance(exc_info.value, TransformError)


def test_invalid_stylesheet(engine, data_dir, books_xml):
    (data_dir / "Transforms" / "broken.xslt").write_text("<xsl:stylesheet", encoding="utf-8")
    with pytest.raises(TransformError):
        engine.transform_to_html(books_xml, "broken")


def test_transform_input_errors(engine):
    with pytest.raises(ArgumentError):
        engine.transform_to_html("", BOOKS_STYLESHEET)
    with pytest.raises(ArgumentError):
        engine.transform_to_html("<Books/>", "../books-to-html")
    with pytest.raises(TransformError):
        engine.transform_to_html("<Books><Book>", BOOKS_STYLESHEET)


def test_permissive_dtd_check(engine, settings, books_xml):
    assert engine.validate_with_dtd(books_xml) is True
    assert engine.validate_with_dtd("<Books><Shelf/></Books>") is False
    assert engine.validate_with_dtd("<Books>") is False
    assert engine.validate_with_dtd(books_xml, "Unknown") is False
    assert TransformEngine(settings).validate_with_dtd(books_xml) is False


def test_timed_out_transform_does_not_block_later_calls(engine, books_xml):
    compiled = engine.load_stylesheet(BOOKS_STYLESHEET)
    # Hold the stylesheet's lock so the timed worker cannot finish.
    compiled.lock.acquire()
    try:
        with pytest.raises(TransformError, match="exceeded"):
            engine.transform_to_html(books_xml, BOOKS_STYLESHEET, timeout=0.2)

        assert engine.load_stylesheet(BOOKS_STYLESHEET) is not compiled
        assert "Library Books" in engine.transform_to_html(books_xml, BOOKS_STYLESHEET)
    finally:
        compiled.lock.release()
