"""FastAPI application exposing the library collections.

Every route is a thin mapping onto :class:`~library_xml_api.library.LibraryService`;
persistence, validation and rendering happen there.

Quick start (run the server)::

    uvicorn library_xml_api.run_server:app --reload

Endpoints:

    GET    /health                           Health probe + registered schemas
    GET    /api/books                        List books
    POST   /api/books                        Create a book
    GET    /api/books/search?title=...       Substring search
    GET    /api/books/search/advanced        Preset searches (type=author|genre|available|out_of_stock)
    GET    /api/books/report?format=html     Library report (HTML or JSON)
    GET    /api/books/transform              Books rendered through books-to-html.xslt
    GET    /api/books/xpath?expression=...   XPath over the books document
    GET    /api/books/validate-dtd           Permissive DTD check of books.xml
    GET    /api/books/{id}                   One book
    PUT    /api/books/{id}                   Replace a book's fields
    DELETE /api/books/{id}                   Delete a book
    ...    /api/members[/{id}]               Same CRUD shape for members
    GET    /api/members/transform            Members rendered to HTML
    GET    /api/borrowings                   Borrowings with book title + member name
    POST   /api/borrowings                   Borrow a book
    GET    /api/borrowings/overdue           Flag and list overdue borrowings
    GET    /api/borrowings/{id}              One borrowing
    PUT    /api/borrowings/{id}/return       Return a book
    POST   /api/auth/login                   Credential check
    GET    /metrics/performance              Request + cache metrics
    GET    /metrics/cache                    Cache analytics + live cache stats

Example::

    curl -X POST http://localhost:8000/api/books \
         -H "Content-Type: application/json" \
         -d '{"isbn": "978-0-441-17271-9", "title": "Dune", "author": "Frank Herbert",
              "publication_year": 1965, "available_copies": 2, "total_copies": 2}'

    curl "http://localhost:8000/api/books/xpath?expression=//Book[Author='Frank Herbert']/Title"

Error handling:
    Package errors are turned into JSON bodies ``{"error", "detail", "path"}``
    (plus ``messages`` for validation failures) with these status codes:
    400 validation/malformed/argument/query, 404 missing record,
    409 business rule conflict, 500 configuration/transform.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from . import __version__, build_service
from .auth import UserDirectory
from .errors import (
    ArgumentError,
    BusinessRuleError,
    ConfigurationError,
    LibraryXMLError,
    MalformedDocumentError,
    QueryError,
    RecordNotFoundError,
    TransformError,
    ValidationError,
)
from .library import LibraryService
from .models import Book, Member
from .monitoring import get_monitor

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Library XML API",
    version=__version__,
    description="Library management API persisted as schema-validated XML collection files",
    docs_url="/docs",
    redoc_url="/redoc",
)


# Performance monitoring middleware
@app.middleware("http")
async def monitor_requests(request: Request, call_next):
    """Middleware to monitor API request performance."""
    start_time = time.time()
    response = await call_next(request)
    response_time = time.time() - start_time

    monitor = get_monitor()
    endpoint = f"{request.method} {request.url.path}"
    monitor.record_endpoint_request(endpoint, response_time, response.status_code)

    response.headers["X-Response-Time"] = f"{response_time:.3f}s"
    response.headers["X-API-Version"] = __version__
    return response


class BookRequest(BaseModel):
    """Request model for creating or updating a book."""

    isbn: str = Field(..., description="ISBN-10 or ISBN-13, hyphens allowed")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Author name")
    publisher: str = Field("", description="Publisher")
    publication_year: int = Field(0, ge=0, le=9999, description="Year of publication")
    genre: str = Field("", description="Genre")
    available_copies: int = Field(1, description="Copies on the shelf (clamped to 0..total)")
    total_copies: int = Field(1, description="Copies owned (at least 1)")

    def to_book(self) -> Book:
        return Book(**self.model_dump())


class MemberRequest(BaseModel):
    """Request model for creating or updating a member."""

    first_name: str
    last_name: str
    email: str
    phone_number: str = ""
    address: str = ""
    status: str = Field("Active", description="Active, Inactive or Suspended")

    def to_member(self) -> Member:
        return Member(**self.model_dump())


class BorrowRequest(BaseModel):
    book_id: int = Field(..., ge=1)
    member_id: int = Field(..., ge=1)


class LoginRequest(BaseModel):
    username: str
    password: str


class XPathResponse(BaseModel):
    expression: str
    count: int
    results: List[str]


@lru_cache(maxsize=1)
def get_library() -> LibraryService:
    return build_service()


def get_user_directory(library: LibraryService = Depends(get_library)) -> UserDirectory:
    return UserDirectory(library.store, seed_default=library.settings.seed_default_users)


# Most specific first: InvalidValidationRequest is both an ArgumentError and a
# ValidationError, StylesheetNotFoundError is both configuration and transform.
ERROR_STATUS = (
    (RecordNotFoundError, 404),
    (BusinessRuleError, 409),
    (ConfigurationError, 500),
    (TransformError, 500),
    (ValidationError, 400),
    (MalformedDocumentError, 400),
    (ArgumentError, 400),
    (QueryError, 400),
)


@app.exception_handler(LibraryXMLError)
async def library_error_handler(request: Request, exc: LibraryXMLError):
    """Map package errors onto JSON error responses."""
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    content: Dict[str, Any] = {
        "error": type(exc).__name__,
        "detail": str(exc),
        "path": str(request.url.path),
    }
    if isinstance(exc, ValidationError):
        content["detail"] = exc.summary
        content["messages"] = exc.messages
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler with more helpful error messages."""
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "detail": (str(exc.detail) if hasattr(exc, "detail") else "The requested resource was not found"),
            "path": str(request.url.path),
        },
    )


@app.get("/health")
def health() -> Dict[str, Any]:
    """Health check endpoint."""
    try:
        library = get_library()
        return {
            "status": "healthy",
            "data_dir": str(library.settings.data_dir),
            "schemas": library.validator.registry.schema_names,
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


# Books -------------------------------------------------------------------


@app.get("/api/books")
def list_books(library: LibraryService = Depends(get_library)) -> List[Dict[str, Any]]:
    return [book.to_dict() for book in library.list_books()]


@app.post("/api/books", status_code=201)
def create_book(request: BookRequest, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.create_book(request.to_book()).to_dict()


@app.get("/api/books/search")
def search_books(
    title: Optional[str] = None,
    author: Optional[str] = None,
    isbn: Optional[str] = None,
    publisher: Optional[str] = None,
    genre: Optional[str] = None,
    available: Optional[bool] = None,
    library: LibraryService = Depends(get_library),
) -> List[Dict[str, Any]]:
    """Search books by case-insensitive substring on any combination of fields.

    Example::

        curl "http://localhost:8000/api/books/search?author=herbert&available=true"
    """
    books = library.search_books(title, author, isbn, publisher, genre, available)
    return [book.to_dict() for book in books]


@app.get("/api/books/search/advanced")
def advanced_search(
    type: str = Query(..., description="author, genre, available or out_of_stock"),
    term: Optional[str] = None,
    library: LibraryService = Depends(get_library),
) -> List[Dict[str, Any]]:
    return [book.to_dict() for book in library.advanced_search(type, term)]


@app.get("/api/books/report")
def books_report(
    format: str = Query("html", pattern="^(html|json)$"),
    library: LibraryService = Depends(get_library),
):
    """Library summary rendered through ``library-report.xslt`` (or as JSON)."""
    if format == "json":
        report = asdict(library.build_report())
        report["generated_at"] = report["generated_at"].isoformat()
        return report
    return HTMLResponse(library.report_html())


@app.get("/api/books/transform", response_class=HTMLResponse)
def books_transform(library: LibraryService = Depends(get_library)) -> str:
    return library.books_html()


@app.get("/api/books/xpath")
def books_xpath(
    expression: str = Query(..., description="XPath 1.0 expression evaluated on books.xml"),
    library: LibraryService = Depends(get_library),
) -> XPathResponse:
    results = library.query_books(expression)
    return XPathResponse(expression=expression, count=len(results), results=results)


@app.get("/api/books/validate-dtd")
def books_validate_dtd(library: LibraryService = Depends(get_library)) -> Dict[str, bool]:
    return {"valid": library.validate_books_with_dtd()}


@app.get("/api/books/{book_id}")
def get_book(book_id: int, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.get_book(book_id).to_dict()


@app.put("/api/books/{book_id}")
def update_book(book_id: int, request: BookRequest, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.update_book(book_id, request.to_book()).to_dict()


@app.delete("/api/books/{book_id}", status_code=204)
def delete_book(book_id: int, library: LibraryService = Depends(get_library)) -> Response:
    library.delete_book(book_id)
    return Response(status_code=204)


# Members -----------------------------------------------------------------


@app.get("/api/members")
def list_members(library: LibraryService = Depends(get_library)) -> List[Dict[str, Any]]:
    return [member.to_dict() for member in library.list_members()]


@app.post("/api/members", status_code=201)
def create_member(request: MemberRequest, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.create_member(request.to_member()).to_dict()


@app.get("/api/members/transform", response_class=HTMLResponse)
def members_transform(library: LibraryService = Depends(get_library)) -> str:
    return library.members_html()


@app.get("/api/members/{member_id}")
def get_member(member_id: int, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.get_member(member_id).to_dict()


@app.put("/api/members/{member_id}")
def update_member(
    member_id: int, request: MemberRequest, library: LibraryService = Depends(get_library)
) -> Dict[str, Any]:
    return library.update_member(member_id, request.to_member()).to_dict()


@app.delete("/api/members/{member_id}", status_code=204)
def delete_member(member_id: int, library: LibraryService = Depends(get_library)) -> Response:
    library.delete_member(member_id)
    return Response(status_code=204)


# Borrowings --------------------------------------------------------------


@app.get("/api/borrowings")
def list_borrowings(library: LibraryService = Depends(get_library)) -> List[Dict[str, Any]]:
    return [details.to_dict() for details in library.list_borrowings()]


@app.post("/api/borrowings", status_code=201)
def borrow_book(request: BorrowRequest, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.borrow_book(request.book_id, request.member_id).to_dict()


@app.get("/api/borrowings/overdue")
def overdue_borrowings(library: LibraryService = Depends(get_library)) -> List[Dict[str, Any]]:
    """Flag borrowings past their due date as Overdue and list all overdue loans."""
    return [details.to_dict() for details in library.mark_overdue()]


@app.get("/api/borrowings/{borrowing_id}")
def get_borrowing(borrowing_id: int, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.get_borrowing(borrowing_id).to_dict()


@app.put("/api/borrowings/{borrowing_id}/return")
def return_borrowing(borrowing_id: int, library: LibraryService = Depends(get_library)) -> Dict[str, Any]:
    return library.return_borrowing(borrowing_id).to_dict()


# Auth --------------------------------------------------------------------


@app.post("/api/auth/login")
def login(request: LoginRequest, users: UserDirectory = Depends(get_user_directory)):
    """Check credentials and return the user's name and role (no token is issued)."""
    if not request.username or not request.password:
        return JSONResponse(status_code=400, content={"message": "Username and password are required"})
    user = users.authenticate(request.username, request.password)
    if user is None:
        return JSONResponse(status_code=401, content={"message": "Invalid username or password"})
    logger.info(f"User {user.username} logged in successfully")
    return {"id": user.id, "username": user.username, "role": user.role}


# Performance monitoring endpoints


@app.get("/metrics/performance")
def get_performance_metrics():
    """Get request and cache performance summary."""
    return get_monitor().get_performance_summary()


@app.get("/metrics/cache")
def get_cache_metrics(library: LibraryService = Depends(get_library)):
    """Get cache analytics plus the live state of the collection cache."""
    analytics = get_monitor().get_cache_analytics()
    analytics["cache_stats"] = library.store.cache.get_cache_stats()
    return analytics
