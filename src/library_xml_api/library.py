"""Library operations on top of the XML store, validator and transform engine.

Every mutation follows the same sequence, under the store's per-file lock:

1. load the collection (or start an empty one),
2. mutate it in memory,
3. encode the whole post-mutation collection and validate it against its
   schema,
4. save only if validation passed.

A failure at step 3 raises :class:`~library_xml_api.errors.ValidationError`
and leaves the file and the cache untouched, because ``load`` hands out
copies.

Ids are ``max(existing) + 1`` starting at 1; ids of deleted records are
never handed out again while a higher id exists.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .config import (
    BOOKS_FILE,
    BORROWINGS_FILE,
    MEMBERS_FILE,
    Settings,
)
from .errors import ArgumentError, BusinessRuleError, RecordNotFoundError, ValidationError
from .models import (
    BORROWED,
    OVERDUE,
    RETURNED,
    Book,
    Books,
    Borrowing,
    Borrowings,
    LibraryReport,
    Member,
    Members,
    NameCount,
    RecordCollection,
)
from .monitoring import get_monitor
from .store import CachedFileStore
from .transform import BOOKS_STYLESHEET, MEMBERS_STYLESHEET, REPORT_STYLESHEET, TransformEngine
from .validation import XmlValidator

logger = logging.getLogger(__name__)

ADVANCED_SEARCH_KINDS = ("author", "genre", "available", "out_of_stock")

BOOK_FIELDS = ("isbn", "title", "author", "publisher", "publication_year", "genre", "available_copies", "total_copies")
MEMBER_FIELDS = ("first_name", "last_name", "email", "phone_number", "address", "status")


@dataclass
class BorrowingDetails:
    """A borrowing joined with the title and member name it refers to."""

    borrowing: Borrowing
    book_title: str
    member_name: str

    def to_dict(self) -> Dict[str, Any]:
        payload = self.borrowing.to_dict()
        payload["book_title"] = self.book_title
        payload["member_name"] = self.member_name
        return payload


def _contains(value: Optional[str], needle: Optional[str]) -> bool:
    if needle is None or not needle.strip():
        return True
    return needle.strip().lower() in (value or "").lower()


def _clamp_copies(book: Book) -> None:
    book.total_copies = max(1, book.total_copies)
    book.available_copies = min(book.total_copies, max(0, book.available_copies))


class LibraryService:
    """Books, members, borrowings and reports persisted as XML collection files.

    Args:
        store: File store shared by every request.
        validator: Schema validator used before every save.
        engine: Transform engine for HTML rendering and XPath queries;
            built from ``settings`` when omitted.
        settings: Loan period and data root; derived from the store when
            omitted.
        today: Date source, replaceable in tests.
    """

    def __init__(
        self,
        store: CachedFileStore,
        validator: XmlValidator,
        engine: Optional[TransformEngine] = None,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.validator = validator
        self.settings = settings or Settings(data_dir=store.data_dir)
        self.engine = engine or TransformEngine(self.settings, validator)
        self._today = today

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _commit(self, collection: RecordCollection, file_name: str) -> None:
        """Validate the whole collection against its schema, then save it."""
        schema_name = collection.root_tag
        xml_text = self.store.codec.encode(collection)
        try:
            self.validator.validate(xml_text, schema_name)
        except ValidationError:
            get_monitor().record_validation_failure(schema_name)
            logger.warning(f"Rejected write to {file_name}; nothing was saved")
            raise
        self.store.save(collection, file_name)

    def _books(self) -> Books:
        return self.store.load_or_empty(BOOKS_FILE, Books)

    def _members(self) -> Members:
        return self.store.load_or_empty(MEMBERS_FILE, Members)

    def _borrowings(self) -> Borrowings:
        return self.store.load_or_empty(BORROWINGS_FILE, Borrowings)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    def list_books(self) -> List[Book]:
        return list(self._books())

    def get_book(self, book_id: int) -> Book:
        book = self._books().find(book_id)
        if book is None:
            raise RecordNotFoundError("Book", book_id)
        return book

    def search_books(
        self,
        title: Optional[str] = None,
        author: Optional[str] = None,
        isbn: Optional[str] = None,
        publisher: Optional[str] = None,
        genre: Optional[str] = None,
        available: Optional[bool] = None,
    ) -> List[Book]:
        """Filter books by case-insensitive substring matches; None/blank filters are ignored."""
        results = []
        for book in self._books():
            if not (
                _contains(book.title, title)
                and _contains(book.author, author)
                and _contains(book.isbn, isbn)
                and _contains(book.publisher, publisher)
                and _contains(book.genre, genre)
            ):
                continue
            if available is not None and (book.available_copies > 0) != available:
                continue
            results.append(book)
        return results

    def advanced_search(self, kind: str, term: Optional[str] = None) -> List[Book]:
        """Preset searches: ``author``/``genre`` (need ``term``), ``available``, ``out_of_stock``.

        ``overdue`` is accepted as an older name for ``out_of_stock``.

        Raises:
            ArgumentError: For an unknown kind or a missing term.
        """
        kind = (kind or "").strip().lower()
        if kind == "overdue":
            kind = "out_of_stock"
        if kind not in ADVANCED_SEARCH_KINDS:
            raise ArgumentError(f"Unknown search type {kind!r}; expected one of {', '.join(ADVANCED_SEARCH_KINDS)}")
        if kind in ("author", "genre"):
            if term is None or not term.strip():
                raise ArgumentError(f"Search type {kind!r} requires a term")
            return self.search_books(**{kind: term})
        if kind == "available":
            return [book for book in self._books() if book.available_copies > 0]
        return [book for book in self._books() if book.available_copies == 0]

    def create_book(self, book: Book) -> Book:
        """Assign the next id, clamp copy counts into range, validate and save.

        Copy counts follow the same rules as updates: total at least 1,
        available between 0 and total. ``book`` itself is left unchanged;
        the stored copy is returned.
        """
        book = replace(book)
        with self.store.lock(BOOKS_FILE):
            books = self._books()
            book.id = books.next_id()
            _clamp_copies(book)
            books.items.append(book)
            self._commit(books, BOOKS_FILE)
        logger.info(f"Created book {book.id} ({book.title!r})")
        return book

    def update_book(self, book_id: int, changes: Book) -> Book:
        with self.store.lock(BOOKS_FILE):
            books = self._books()
            book = books.find(book_id)
            if book is None:
                raise RecordNotFoundError("Book", book_id)
            for name in BOOK_FIELDS:
                setattr(book, name, getattr(changes, name))
            _clamp_copies(book)
            self._commit(books, BOOKS_FILE)
        return book

    def delete_book(self, book_id: int) -> None:
        with self.store.lock(BOOKS_FILE):
            books = self._books()
            if not books.remove(book_id):
                raise RecordNotFoundError("Book", book_id)
            self._commit(books, BOOKS_FILE)
        logger.info(f"Deleted book {book_id}")

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------
    def list_members(self) -> List[Member]:
        return list(self._members())

    def get_member(self, member_id: int) -> Member:
        member = self._members().find(member_id)
        if member is None:
            raise RecordNotFoundError("Member", member_id)
        return member

    def create_member(self, member: Member) -> Member:
        """Register a copy of ``member``; membership starts today with status ``Active``."""
        member = replace(member)
        with self.store.lock(MEMBERS_FILE):
            members = self._members()
            member.id = members.next_id()
            member.membership_date = self._today()
            member.status = "Active"
            members.items.append(member)
            self._commit(members, MEMBERS_FILE)
        logger.info(f"Created member {member.id} ({member.full_name})")
        return member

    def update_member(self, member_id: int, changes: Member) -> Member:
        """Update contact details and status; the membership date is kept."""
        with self.store.lock(MEMBERS_FILE):
            members = self._members()
            member = members.find(member_id)
            if member is None:
                raise RecordNotFoundError("Member", member_id)
            for name in MEMBER_FIELDS:
                setattr(member, name, getattr(changes, name))
            self._commit(members, MEMBERS_FILE)
        return member

    def delete_member(self, member_id: int) -> None:
        """Remove a member who has nothing on loan.

        Raises:
            BusinessRuleError: If the member has borrowed or overdue books.
        """
        with self.store.lock(MEMBERS_FILE, BORROWINGS_FILE):
            members = self._members()
            if members.find(member_id) is None:
                raise RecordNotFoundError("Member", member_id)
            active = [
                b for b in self._borrowings() if b.member_id == member_id and b.status in (BORROWED, OVERDUE)
            ]
            if active:
                raise BusinessRuleError(
                    "Cannot delete member with active borrowings. Please return all books first."
                )
            members.remove(member_id)
            self._commit(members, MEMBERS_FILE)
        logger.info(f"Deleted member {member_id}")

    # ------------------------------------------------------------------
    # Borrowings
    # ------------------------------------------------------------------
    def _details(self, items: List[Borrowing]) -> List[BorrowingDetails]:
        books = self._books()
        members = self._members()
        details = []
        for borrowing in items:
            book = books.find(borrowing.book_id)
            member = members.find(borrowing.member_id)
            details.append(
                BorrowingDetails(
                    borrowing=borrowing,
                    book_title=book.title if book else "Unknown Book",
                    member_name=member.full_name if member else "Unknown Member",
                )
            )
        return details

    def list_borrowings(self) -> List[BorrowingDetails]:
        return self._details(list(self._borrowings()))

    def get_borrowing(self, borrowing_id: int) -> Borrowing:
        borrowing = self._borrowings().find(borrowing_id)
        if borrowing is None:
            raise RecordNotFoundError("Borrowing", borrowing_id)
        return borrowing

    def borrow_book(self, book_id: int, member_id: int) -> Borrowing:
        """Lend one copy of ``book_id`` to ``member_id``.

        The member id is recorded as given; only the book is checked.

        Raises:
            BusinessRuleError: If the book does not exist or has no copy left.
            ValidationError: If either collection would become invalid.
        """
        with self.store.lock(BOOKS_FILE, BORROWINGS_FILE):
            books = self._books()
            book = books.find(book_id)
            if book is None:
                raise BusinessRuleError(f"Book {book_id} not found")
            if book.available_copies <= 0:
                raise BusinessRuleError(f"Book {book_id} is not available")

            borrowings = self._borrowings()
            borrow_date = self._today()
            borrowing = Borrowing(
                id=borrowings.next_id(),
                book_id=book_id,
                member_id=member_id,
                borrow_date=borrow_date,
                due_date=borrow_date + timedelta(days=self.settings.loan_period_days),
                return_date=None,
                status=BORROWED,
            )
            borrowings.items.append(borrowing)
            book.available_copies -= 1

            # Validate both before writing either.
            self.validator.validate(self.store.codec.encode(books), Books.root_tag)
            self._commit(borrowings, BORROWINGS_FILE)
            self.store.save(books, BOOKS_FILE)
        logger.info(f"Book {book_id} borrowed by member {member_id} (borrowing {borrowing.id})")
        return borrowing

    def return_borrowing(self, borrowing_id: int) -> Borrowing:
        """Close a borrowing and put the copy back on the shelf.

        Raises:
            RecordNotFoundError: If the borrowing does not exist.
            BusinessRuleError: If it was already returned.
        """
        with self.store.lock(BOOKS_FILE, BORROWINGS_FILE):
            borrowings = self._borrowings()
            borrowing = borrowings.find(borrowing_id)
            if borrowing is None:
                raise RecordNotFoundError("Borrowing", borrowing_id)
            if borrowing.status == RETURNED:
                raise BusinessRuleError("Book already returned")

            borrowing.return_date = self._today()
            borrowing.status = RETURNED

            books = self._books()
            book = books.find(borrowing.book_id)
            if book is not None:
                book.available_copies = min(book.total_copies, book.available_copies + 1)
                self.validator.validate(self.store.codec.encode(books), Books.root_tag)
            self._commit(borrowings, BORROWINGS_FILE)
            if book is not None:
                self.store.save(books, BOOKS_FILE)
            else:
                logger.warning(f"Borrowing {borrowing_id} refers to missing book {borrowing.book_id}")
        logger.info(f"Borrowing {borrowing_id} returned")
        return borrowing

    def mark_overdue(self) -> List[BorrowingDetails]:
        """Flag every ``Borrowed`` loan past its due date as ``Overdue``.

        Returns:
            All borrowings in ``Overdue`` status after the sweep.
        """
        today = self._today()
        with self.store.lock(BORROWINGS_FILE):
            borrowings = self._borrowings()
            changed = 0
            for borrowing in borrowings:
                if borrowing.status == BORROWED and borrowing.due_date < today:
                    borrowing.status = OVERDUE
                    changed += 1
            if changed:
                self._commit(borrowings, BORROWINGS_FILE)
                logger.info(f"Marked {changed} borrowing(s) overdue")
        return self._details([b for b in borrowings if b.status == OVERDUE])

    # ------------------------------------------------------------------
    # Reports and queries
    # ------------------------------------------------------------------
    def build_report(self) -> LibraryReport:
        books = list(self._books())
        borrowings = list(self._borrowings())
        today = self._today()
        genres = Counter(book.genre for book in books)
        authors = Counter(book.author for book in books)
        return LibraryReport(
            generated_at=datetime.now(),
            total_books=len(books),
            total_members=len(self._members()),
            active_borrowings=sum(1 for b in borrowings if b.status == BORROWED),
            available_books=sum(1 for book in books if book.available_copies > 0),
            out_of_stock_books=sum(1 for book in books if book.available_copies == 0),
            overdue_borrowings=sum(1 for b in borrowings if b.is_overdue(today)),
            popular_genres=[NameCount(name, count) for name, count in genres.most_common(5)],
            popular_authors=[NameCount(name, count) for name, count in authors.most_common(5)],
        )

    def report_html(self, timeout: Optional[float] = None) -> str:
        report_xml = self.store.codec.encode(self.build_report())
        return self.engine.transform_to_html(report_xml, REPORT_STYLESHEET, timeout=timeout)

    def books_xml(self) -> str:
        return self.store.codec.encode(self._books())

    def books_html(self, timeout: Optional[float] = None) -> str:
        return self.engine.transform_to_html(self.books_xml(), BOOKS_STYLESHEET, timeout=timeout)

    def members_html(self, timeout: Optional[float] = None) -> str:
        return self.engine.transform_to_html(self.store.codec.encode(self._members()), MEMBERS_STYLESHEET, timeout=timeout)

    def query_books(self, expression: str) -> List[str]:
        """Run an XPath expression over the current books document."""
        return self.engine.query_xpath(self.books_xml(), expression)

    def validate_books_with_dtd(self) -> bool:
        return self.engine.validate_with_dtd(self.books_xml(), "Books")

