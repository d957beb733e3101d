"""Typed records and collections persisted as XML collection files.

Each entity type is stored as one XML document holding the whole
collection (``books.xml`` holds every :class:`Book`, and so on). These
dataclasses are the in-memory side of that mapping; the element layout
lives in :mod:`library_xml_api.codec`.

Overview:
        * ``Book``, ``Member``, ``Borrowing`` and ``User`` are plain records
            with a numeric ``id`` assigned by the service layer (``0`` means
            "not assigned yet").
        * ``Books``, ``Members``, ``Borrowings`` and ``Users`` wrap a list of
            records and know their XML root / record element names.
        * ``LibraryReport`` is a derived, encode-only summary document.

Typical construction::

        from library_xml_api.models import Book, Books

        books = Books(items=[
                Book(id=1, isbn="978-3-16-148410-0", title="Dune", author="Frank Herbert",
                     publication_year=1965, available_copies=2, total_copies=2),
        ])
        books.next_id()        # -> 2
        books.find(1).title    # -> "Dune"

Design notes:
        * Collections keep records in a plain list so the XML output order
            matches insertion order.
        * Id allocation is ``max(existing) + 1``; ids of deleted records are
            never reused.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any, ClassVar, Dict, Generic, Iterator, List, Optional, Type, TypeVar

BORROWED = "Borrowed"
RETURNED = "Returned"
OVERDUE = "Overdue"
BORROWING_STATUSES = (BORROWED, RETURNED, OVERDUE)

MEMBER_STATUSES = ("Active", "Inactive", "Suspended")


class Record:
    """Mixin giving records a JSON-ready ``to_dict``."""

    id: int

    def to_dict(self) -> Dict[str, Any]:
        """Return the record as primitives (dates rendered ``YYYY-MM-DD``).

        Example:
            >>> Book(id=3, isbn="0306406152", title="T", author="A").to_dict()["id"]
            3
        """
        payload: Dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, date):
                value = value.isoformat()
            payload[f.name] = value
        return payload


@dataclass
class Book(Record):
    """A catalogue entry. Invariant: ``0 <= available_copies <= total_copies``."""

    id: int = 0
    isbn: str = ""
    title: str = ""
    author: str = ""
    publisher: str = ""
    publication_year: int = 0
    genre: str = ""
    available_copies: int = 1
    total_copies: int = 1

    @property
    def stock_status(self) -> str:
        if self.available_copies == 0:
            return "Out of Stock"
        if self.available_copies < self.total_copies // 2:
            return "Low Stock"
        return "In Stock"


@dataclass
class Member(Record):
    """A library member. ``status`` is free text, usually one of MEMBER_STATUSES."""

    id: int = 0
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone_number: str = ""
    address: str = ""
    membership_date: date = field(default_factory=date.today)
    status: str = "Active"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Borrowing(Record):
    """One loan of one book to one member."""

    id: int = 0
    book_id: int = 0
    member_id: int = 0
    borrow_date: date = field(default_factory=date.today)
    due_date: date = field(default_factory=date.today)
    return_date: Optional[date] = None
    status: str = BORROWED

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """True if still out and the due date has passed."""
        today = today or date.today()
        return self.status in (BORROWED, OVERDUE) and self.due_date < today


@dataclass
class User(Record):
    """Stored credentials. ``password_hash`` is never returned by the API."""

    id: int = 0
    username: str = ""
    password_hash: str = ""
    role: str = "User"


R = TypeVar("R", bound=Record)


class RecordCollection(Generic[R]):
    """Behaviour shared by the four collection types."""

    root_tag: ClassVar[str]
    record_tag: ClassVar[str]
    record_type: ClassVar[Type[Record]]

    items: List[R]

    def __iter__(self) -> Iterator[R]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def find(self, record_id: int) -> Optional[R]:
        return next((item for item in self.items if item.id == record_id), None)

    def next_id(self) -> int:
        return max((item.id for item in self.items), default=0) + 1

    def remove(self, record_id: int) -> bool:
        record = self.find(record_id)
        if record is None:
            return False
        self.items.remove(record)
        return True


@dataclass
class Books(RecordCollection[Book]):
    root_tag: ClassVar[str] = "Books"
    record_tag: ClassVar[str] = "Book"
    record_type: ClassVar[Type[Record]] = Book

    items: List[Book] = field(default_factory=list)


@dataclass
class Members(RecordCollection[Member]):
    root_tag: ClassVar[str] = "Members"
    record_tag: ClassVar[str] = "Member"
    record_type: ClassVar[Type[Record]] = Member

    items: List[Member] = field(default_factory=list)


@dataclass
class Borrowings(RecordCollection[Borrowing]):
    root_tag: ClassVar[str] = "Borrowings"
    record_tag: ClassVar[str] = "Borrowing"
    record_type: ClassVar[Type[Record]] = Borrowing

    items: List[Borrowing] = field(default_factory=list)


@dataclass
class Users(RecordCollection[User]):
    root_tag: ClassVar[str] = "Users"
    record_tag: ClassVar[str] = "User"
    record_type: ClassVar[Type[Record]] = User

    items: List[User] = field(default_factory=list)


COLLECTION_TYPES: Dict[str, Type[RecordCollection]] = {
    cls.root_tag: cls for cls in (Books, Members, Borrowings, Users)
}


@dataclass
class NameCount:
    name: str
    count: int


@dataclass
class LibraryReport:
    """Summary statistics rendered to HTML through ``library-report.xslt``.

    Attributes:
        generated_at: Timestamp of report creation.
        total_books: Number of distinct titles.
        total_members: Number of members.
        active_borrowings: Borrowings still in ``Borrowed`` status.
        available_books: Titles with at least one copy on the shelf.
        out_of_stock_books: Titles with no copy on the shelf.
        overdue_borrowings: Borrowings past their due date and not returned.
        popular_genres: Top five genres by title count.
        popular_authors: Top five authors by title count.
    """

    generated_at: datetime = field(default_factory=datetime.now)
    total_books: int = 0
    total_members: int = 0
    active_borrowings: int = 0
    available_books: int = 0
    out_of_stock_books: int = 0
    overdue_borrowings: int = 0
    popular_genres: List[NameCount] = field(default_factory=list)
    popular_authors: List[NameCount] = field(default_factory=list)
