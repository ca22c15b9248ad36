"""
Catalog service: paginated listing, single-book lookup and file-path
resolution over a Calibre library.

The library (metadata.db plus one directory per book) is owned by Calibre;
this service only reads it. Rows are mapped to the Book model here so the
HTTP layer never sees raw database rows. Columns Calibre may leave empty
(publisher, series, language, format, ...) stay None rather than "".
"""
import logging
import os
from typing import Any

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from calibre_shelf.config import DEFAULT_PAGE_SIZE
from calibre_shelf.services.errors import StorageError

logger = logging.getLogger(__name__)

COVER_FILENAME = "cover.jpg"

# Largest value SQLite can bind as INTEGER
_SQLITE_MAX_INT = 2**63 - 1

# One row per book with link tables resolved. format picks whichever data row
# SQLite returns first; with several stored formats the choice is arbitrary.
_BOOK_PROJECTION = """
    SELECT
        b.id AS id,
        b.title AS title,
        (SELECT GROUP_CONCAT(a.name, ', ')
           FROM books_authors_link bal
           JOIN authors a ON a.id = bal.author
          WHERE bal.book = b.id) AS author,
        (SELECT p.name
           FROM books_publishers_link bpl
           JOIN publishers p ON p.id = bpl.publisher
          WHERE bpl.book = b.id
          LIMIT 1) AS publisher,
        b.pubdate AS pubdate,
        b.isbn AS isbn,
        b.path AS path,
        b.has_cover AS has_cover,
        b.timestamp AS timestamp,
        b.last_modified AS last_modified,
        (SELECT s.name
           FROM books_series_link bsl
           JOIN series s ON s.id = bsl.series
          WHERE bsl.book = b.id
          LIMIT 1) AS series,
        b.series_index AS series_index,
        (SELECT l.lang_code
           FROM books_languages_link bll
           JOIN languages l ON l.id = bll.lang_code
          WHERE bll.book = b.id
          ORDER BY bll.item_order
          LIMIT 1) AS language,
        (SELECT d.format FROM data d WHERE d.book = b.id LIMIT 1) AS format
    FROM books b
"""

_SEARCH_PREDICATE = (
    "(casefold(bk.title) LIKE :pattern ESCAPE '\\'"
    " OR casefold(bk.author) LIKE :pattern ESCAPE '\\')"
)


class Book(BaseModel):
    """A book as exposed by the API."""
    id: int
    title: str
    author: str | None = None
    publisher: str | None = None
    pubdate: str | None = None
    isbn: str | None = None
    path: str
    has_cover: int = 0
    timestamp: str | None = None
    last_modified: str | None = None
    series: str | None = None
    series_index: float | None = None
    language: str | None = None
    format: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Book":
        fmt = row.get("format")
        return cls(
            id=row["id"],
            title=row["title"],
            author=row.get("author") or None,
            publisher=row.get("publisher") or None,
            pubdate=_as_text(row.get("pubdate")),
            isbn=row.get("isbn") or None,
            path=row["path"],
            has_cover=1 if row.get("has_cover") else 0,
            timestamp=_as_text(row.get("timestamp")),
            last_modified=_as_text(row.get("last_modified")),
            series=row.get("series") or None,
            series_index=row.get("series_index"),
            language=row.get("language") or None,
            # Calibre stores upper-case codes (EPUB); file extensions are lower-case
            format=fmt.lower() if fmt else None,
        )


class BookPage(BaseModel):
    books: list[Book]
    total: int


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _like_pattern(term: str) -> str:
    """Substring LIKE pattern with the term's own wildcards escaped."""
    escaped = (
        term.casefold()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def format_authors(author: str | None) -> str:
    """Rewrite a pipe-delimited author list as "A, B"."""
    if not author:
        return ""
    parts = [a.strip() for a in author.split("|")]
    return ", ".join(p for p in parts if p)


class CatalogService:
    """
    Read access to a Calibre library. The engine passed in stays open for the
    life of the service; close() is called once at application shutdown.
    """

    def __init__(self, engine: Engine, library_path: str):
        self._engine = engine
        self._library_path = os.path.abspath(library_path)

    @property
    def library_path(self) -> str:
        return self._library_path

    def close(self) -> None:
        self._engine.dispose()

    def get_books(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
    ) -> BookPage:
        """
        One page of books, newest first, with the total under the same filter.
        search matches title or author as a case-insensitive substring.
        """
        page = max(1, page)
        page_size = min(max(1, page_size), _SQLITE_MAX_INT)
        params: dict[str, Any] = {
            "limit": page_size,
            # Past the last row either way; larger values do not bind
            "offset": min((page - 1) * page_size, _SQLITE_MAX_INT),
        }
        where = ""
        if search is not None and search.strip():
            where = f"WHERE {_SEARCH_PREDICATE}"
            params["pattern"] = _like_pattern(search.strip())

        count_sql = text(f"SELECT COUNT(*) FROM ({_BOOK_PROJECTION}) AS bk {where}")
        page_sql = text(
            f"SELECT bk.* FROM ({_BOOK_PROJECTION}) AS bk {where} "
            "ORDER BY bk.timestamp DESC, bk.id DESC "
            "LIMIT :limit OFFSET :offset"
        )
        try:
            with self._engine.connect() as conn:
                total = conn.execute(count_sql, params).scalar_one()
                rows = conn.execute(page_sql, params).mappings().all()
        except SQLAlchemyError as e:
            logger.exception(
                "Book listing failed page=%s page_size=%s search=%r", page, page_size, search
            )
            raise StorageError("book listing failed") from e
        return BookPage(books=[Book.from_row(dict(r)) for r in rows], total=total)

    def get_book_by_id(self, book_id: int) -> Book | None:
        sql = text(f"SELECT bk.* FROM ({_BOOK_PROJECTION}) AS bk WHERE bk.id = :id")
        try:
            with self._engine.connect() as conn:
                row = conn.execute(sql, {"id": book_id}).mappings().first()
        except SQLAlchemyError as e:
            logger.exception("Book lookup failed id=%s", book_id)
            raise StorageError("book lookup failed") from e
        return Book.from_row(dict(row)) if row is not None else None

    def get_cover_path(self, book: Book) -> str | None:
        """Path of the book's cover.jpg, or None if the book has no cover. Not checked on disk."""
        if not book.has_cover:
            return None
        return self._resolve(book.path, COVER_FILENAME)

    def get_book_file_path(self, book: Book) -> str | None:
        """
        Path of the stored book file, named the way Calibre writes it:
        "<title> - <authors>.<format>", or "<title>.<format>" with no author.
        None if the book has no stored format. Not checked on disk.
        """
        if not book.format:
            return None
        authors = format_authors(book.author)
        stem = f"{book.title} - {authors}" if authors else book.title
        return self._resolve(book.path, f"{stem}.{book.format}")

    def _resolve(self, relative_dir: str, filename: str) -> str | None:
        path = os.path.abspath(os.path.join(self._library_path, relative_dir, filename))
        if os.path.commonpath([self._library_path, path]) != self._library_path:
            logger.warning("Book path escapes library root: %s", path)
            return None
        return path
