import os
import sqlite3

import pytest
from fastapi.testclient import TestClient

from calibre_shelf.config import Settings
from calibre_shelf.database import create_library_engine
from calibre_shelf.main import create_app
from calibre_shelf.services.catalog_service import CatalogService

JWT_SECRET = "test-secret"

CALIBRE_SCHEMA = """
CREATE TABLE books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL DEFAULT 'Unknown',
    sort TEXT,
    timestamp TIMESTAMP,
    pubdate TIMESTAMP,
    series_index REAL NOT NULL DEFAULT 1.0,
    author_sort TEXT,
    isbn TEXT DEFAULT '',
    path TEXT NOT NULL DEFAULT '',
    has_cover BOOL DEFAULT 0,
    last_modified TIMESTAMP
);
CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT NOT NULL, sort TEXT, link TEXT DEFAULT '');
CREATE TABLE books_authors_link (id INTEGER PRIMARY KEY, book INTEGER NOT NULL, author INTEGER NOT NULL);
CREATE TABLE publishers (id INTEGER PRIMARY KEY, name TEXT NOT NULL, sort TEXT);
CREATE TABLE books_publishers_link (id INTEGER PRIMARY KEY, book INTEGER NOT NULL, publisher INTEGER NOT NULL);
CREATE TABLE series (id INTEGER PRIMARY KEY, name TEXT NOT NULL, sort TEXT);
CREATE TABLE books_series_link (id INTEGER PRIMARY KEY, book INTEGER NOT NULL, series INTEGER NOT NULL);
CREATE TABLE languages (id INTEGER PRIMARY KEY, lang_code TEXT NOT NULL);
CREATE TABLE books_languages_link (
    id INTEGER PRIMARY KEY, book INTEGER NOT NULL, lang_code INTEGER NOT NULL, item_order INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE data (
    id INTEGER PRIMARY KEY, book INTEGER NOT NULL, format TEXT NOT NULL, uncompressed_size INTEGER NOT NULL, name TEXT NOT NULL
);
"""

# (id, title, authors, timestamp, has_cover, format, publisher, series)
SAMPLE_BOOKS = [
    (1, "Test Book", ["Jane Doe"], "2024-01-01 10:00:00+00:00", 1, "EPUB", "Acme", "Tests"),
    (2, "Python Tricks", ["Dan Bader"], "2024-02-01 10:00:00+00:00", 0, "PDF", None, None),
    (3, "100% Pure", ["Al Percent"], "2024-03-01 10:00:00+00:00", 0, None, None, None),
    (4, "snake_case guide", ["Pat O'Brien"], "2024-03-01 10:00:00+00:00", 0, None, None, None),
    (5, "Shared Work", ["Ann One", "Bob Two"], "2023-12-01 10:00:00+00:00", 0, "EPUB", None, None),
    (6, "Grey Book", ["grey"], "2023-11-01 10:00:00+00:00", 1, None, None, None),
    (7, "Élan Vital", ["Émile Ajar"], "2021-06-01 10:00:00+00:00", 0, None, None, None),
]

FILLER_COUNT = 20


def _all_books():
    books = list(SAMPLE_BOOKS)
    for i in range(FILLER_COUNT):
        book_id = 100 + i
        books.append(
            (book_id, f"Filler {i:02d}", ["Filler Author"], f"2022-01-{i + 1:02d} 08:00:00+00:00", 0, None, None, None)
        )
    return books


def _author_dir(authors):
    return authors[0]


def build_library(root) -> str:
    """Create a Calibre-shaped metadata.db plus book folders under root."""
    db_path = os.path.join(root, "metadata.db")
    conn = sqlite3.connect(db_path)
    conn.executescript(CALIBRE_SCHEMA)
    conn.execute("INSERT INTO languages (id, lang_code) VALUES (1, 'eng')")
    author_ids = {}
    publisher_ids = {}
    series_ids = {}
    for book_id, title, authors, ts, has_cover, fmt, publisher, series in _all_books():
        path = f"{_author_dir(authors)}/{title} ({book_id})"
        conn.execute(
            "INSERT INTO books (id, title, sort, timestamp, pubdate, series_index, isbn, path, has_cover, last_modified)"
            " VALUES (?, ?, ?, ?, ?, 1.0, '', ?, ?, ?)",
            (book_id, title, title, ts, "2020-05-05 00:00:00+00:00", path, has_cover, ts),
        )
        for name in authors:
            if name not in author_ids:
                author_ids[name] = len(author_ids) + 1
                conn.execute("INSERT INTO authors (id, name, sort) VALUES (?, ?, ?)", (author_ids[name], name, name))
            conn.execute(
                "INSERT INTO books_authors_link (book, author) VALUES (?, ?)", (book_id, author_ids[name])
            )
        if publisher:
            if publisher not in publisher_ids:
                publisher_ids[publisher] = len(publisher_ids) + 1
                conn.execute("INSERT INTO publishers (id, name) VALUES (?, ?)", (publisher_ids[publisher], publisher))
            conn.execute(
                "INSERT INTO books_publishers_link (book, publisher) VALUES (?, ?)",
                (book_id, publisher_ids[publisher]),
            )
        if series:
            if series not in series_ids:
                series_ids[series] = len(series_ids) + 1
                conn.execute("INSERT INTO series (id, name) VALUES (?, ?)", (series_ids[series], series))
            conn.execute("INSERT INTO books_series_link (book, series) VALUES (?, ?)", (book_id, series_ids[series]))
        if book_id == 1:
            conn.execute("INSERT INTO books_languages_link (book, lang_code, item_order) VALUES (1, 1, 0)")

        book_dir = os.path.join(root, path)
        os.makedirs(book_dir, exist_ok=True)
        if has_cover and book_id == 1:
            with open(os.path.join(book_dir, "cover.jpg"), "wb") as f:
                f.write(b"\xff\xd8\xff\xe0fake-jpeg")
        if fmt:
            stem = f"{title} - {', '.join(authors)}"
            conn.execute(
                "INSERT INTO data (book, format, uncompressed_size, name) VALUES (?, ?, 10, ?)",
                (book_id, fmt, stem),
            )
            if book_id == 1:
                with open(os.path.join(book_dir, f"{stem}.{fmt.lower()}"), "wb") as f:
                    f.write(b"PK\x03\x04fake-epub")
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def library_dir(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    build_library(str(root))
    return root


@pytest.fixture
def catalog(library_dir):
    service = CatalogService(
        create_library_engine(str(library_dir / "metadata.db")),
        str(library_dir),
    )
    yield service
    service.close()


@pytest.fixture
def settings(tmp_path, library_dir):
    return Settings(
        app_database_url=f"sqlite:///{tmp_path / 'app.db'}",
        calibre_db_path=str(library_dir / "metadata.db"),
        calibre_library_path=str(library_dir),
        jwt_secret=JWT_SECRET,
        admin_email="admin@example.com",
        admin_username="admin",
        admin_password="admin-pass",
        google_client_id="google-id",
        google_client_secret="google-secret",
        github_client_id="github-id",
        github_client_secret="github-secret",
        public_url="http://testserver",
        frontend_url="http://frontend.test",
        bcrypt_rounds=4,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user_service(app):
    return app.state.user_service


@pytest.fixture
def auth_service(app):
    return app.state.auth_service


@pytest.fixture
def alice(user_service):
    return user_service.create_user(
        "alice", "alice@example.com", "correct", is_approved=True
    )


@pytest.fixture
def pending_user(user_service):
    return user_service.find_or_create_oauth_user(
        "google", "g-123", "pending@example.com", "Pending Person"
    )


@pytest.fixture
def auth_headers(auth_service):
    def make(user) -> dict:
        return {"Authorization": f"Bearer {auth_service.generate_token(user)}"}
    return make
