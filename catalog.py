# catalog.py - Book catalogue owned by users
from typing import Any, Dict, List, Optional

import db
from error_handling import ValidationError, NotFoundError, parse_int, parse_price
from security import AuthorizationPolicy
from utils import logger

BOOK_TEXT_FIELDS = ("isbn", "genre", "publisher", "description", "cover_url")
BOOK_INT_FIELDS = ("publication_year", "pages")

SAMPLE_BOOKS = [
    {
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "price": 12.99,
        "isbn": "978-0743273565",
        "genre": "Classic Fiction",
        "publication_year": 1925,
        "publisher": "Scribner",
        "pages": 180,
        "description": "A story of the fabulously wealthy Jay Gatsby and his love for the beautiful "
                       "Daisy Buchanan, of lavish parties on Long Island.",
    },
    {
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "price": 14.99,
        "isbn": "978-0061120084",
        "genre": "Classic Fiction",
        "publication_year": 1960,
        "publisher": "Harper Perennial",
        "pages": 324,
        "description": "The unforgettable novel of a childhood in a sleepy Southern town and the "
                       "crisis of conscience that rocked it.",
    },
    {
        "title": "1984",
        "author": "George Orwell",
        "price": 13.99,
        "isbn": "978-0451524935",
        "genre": "Science Fiction",
        "publication_year": 1949,
        "publisher": "Signet Classic",
        "pages": 328,
        "description": "A dystopian social science fiction novel and cautionary tale about the "
                       "dangers of totalitarianism.",
    },
]


def _clean_book_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    title = str(data.get("title") or "").strip()
    author = str(data.get("author") or "").strip()
    if not title or not author:
        raise ValidationError("All fields are required and price must be a positive number")
    try:
        price = parse_price(data.get("price"))
    except ValidationError:
        raise ValidationError("All fields are required and price must be a positive number")

    fields = {"title": title, "author": author, "price": price}
    for name in BOOK_TEXT_FIELDS:
        value = data.get(name)
        fields[name] = str(value).strip() if value not in (None, "") else None
    for name in BOOK_INT_FIELDS:
        fields[name] = parse_int(data.get(name), name, required=False, minimum=0)
    return fields


def _book(row):
    return db.with_money(row, "price")


def list_books(genre: Optional[str] = None, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM books WHERE 1=1"
    params: List[Any] = []
    if genre:
        sql += " AND LOWER(genre) LIKE ?"
        params.append(f"%{genre.lower()}%")
    if user_id is not None:
        sql += " AND user_id = ?"
        params.append(user_id)
    sql += " ORDER BY created_at DESC, id DESC"
    return [_book(row) for row in db.query_all(sql, params)]


def get_book(book_id: int) -> Dict[str, Any]:
    row = db.query_one("SELECT * FROM books WHERE id = ?", (book_id,))
    if not row:
        raise NotFoundError("Book not found")
    return _book(row)


def create_book(user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _clean_book_fields(data)
    columns = ["user_id"] + list(fields.keys())
    placeholders = ", ".join("?" for _ in columns)
    with db.transaction() as c:
        book_id = db.insert_returning_id(
            c,
            f"INSERT INTO books ({', '.join(columns)}) VALUES ({placeholders})",
            [user_id] + list(fields.values()),
        )
        c.execute("SELECT * FROM books WHERE id = ?", (book_id,))
        book = _book(db.fetch_one(c))
    logger.info(f"User {user_id} added book {book_id}: {book['title']}")
    return book


def update_book(book_id: int, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _clean_book_fields(data)
    assignments = ", ".join(f"{name} = ?" for name in fields)
    rowcount = db.execute(
        f"UPDATE books SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ? AND user_id = ?",
        list(fields.values()) + [book_id, user_id],
    )
    if rowcount == 0:
        raise AuthorizationPolicy.deny("book")
    return get_book(book_id)


def delete_book(book_id: int, user_id: int) -> None:
    """Delete a book; its listings go with it."""
    rowcount = db.execute("DELETE FROM books WHERE id = ? AND user_id = ?", (book_id, user_id))
    if rowcount == 0:
        raise AuthorizationPolicy.deny("book")
    logger.info(f"User {user_id} deleted book {book_id}")


def seed_sample_books() -> int:
    """Insert the sample catalogue into an empty books table. Returns rows added."""
    with db.transaction() as c:
        c.execute("SELECT COUNT(*) FROM books")
        if c.fetchone()[0]:
            return 0
        for book in SAMPLE_BOOKS:
            columns = list(book.keys())
            c.execute(
                f"INSERT INTO books ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                [book[col] for col in columns],
            )
    logger.info(f"Inserted {len(SAMPLE_BOOKS)} sample books")
    return len(SAMPLE_BOOKS)
