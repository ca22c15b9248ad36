"""
Books router: catalog listing, book details, cover image and file download.

Delegates queries and path derivation to services.catalog_service. All
endpoints require an approved account. Files are streamed with FileResponse;
existence is checked here, right before sending.
"""
import os
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse

from calibre_shelf.auth import get_settings, require_approved
from calibre_shelf.config import DEFAULT_PAGE_SIZE, Settings
from calibre_shelf.services.catalog_service import Book, BookPage, CatalogService

router = APIRouter(prefix="/api/books", dependencies=[Depends(require_approved)])


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def _int_or_default(raw: str | None, default: int) -> int:
    """Parse a query value; missing, non-numeric or < 1 gives the default."""
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    return value if value >= 1 else default


def _parse_book_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid book ID")


def _load_book(raw_id: str, catalog: CatalogService) -> Book:
    book = catalog.get_book_by_id(_parse_book_id(raw_id))
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def content_disposition(filename: str) -> str:
    """
    attachment header for filename. Header values must be Latin-1, so other
    names get an ASCII fallback plus an RFC 5987 filename* parameter.
    """
    filename = filename.replace('"', "").replace("\r", "").replace("\n", "")
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'attachment; filename="{filename}"'


@router.get("", response_model=BookPage)
def list_books(
    page: str | None = None,
    limit: str | None = None,
    search: str | None = None,
    catalog: CatalogService = Depends(get_catalog_service),
    settings: Settings = Depends(get_settings),
):
    """
    Return one page of books, newest first, and the total matching the search.
    search matches title or author, case-insensitively.
    """
    page_num = _int_or_default(page, 1)
    page_size = min(_int_or_default(limit, DEFAULT_PAGE_SIZE), settings.max_page_size)
    return catalog.get_books(page_num, page_size, search)


@router.get("/{book_id}", response_model=Book)
def get_book(book_id: str, catalog: CatalogService = Depends(get_catalog_service)):
    return _load_book(book_id, catalog)


@router.get("/{book_id}/cover")
def get_book_cover(book_id: str, catalog: CatalogService = Depends(get_catalog_service)):
    """Serve the book's cover.jpg."""
    book = _load_book(book_id, catalog)
    path = catalog.get_cover_path(book)
    if path is None or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Cover not found")
    return FileResponse(path, media_type="image/jpeg")


@router.get("/{book_id}/download")
def download_book(book_id: str, catalog: CatalogService = Depends(get_catalog_service)):
    """
    Stream the stored book file as an attachment named "<title>.<format>",
    with Content-Type application/<format>.
    """
    book = _load_book(book_id, catalog)
    path = catalog.get_book_file_path(book)
    if path is None or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(
        path,
        media_type=f"application/{book.format}",
        headers={"Content-Disposition": content_disposition(f"{book.title}.{book.format}")},
    )
