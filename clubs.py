# clubs.py - Book clubs and discussion forums
from typing import Any, Dict, List

import db
from error_handling import NotFoundError, ValidationError, parse_int
from security import AuthorizationPolicy
from social import record_activity
from utils import logger

CLUB_MANAGER_ROLES = ("admin", "moderator")


def _club(row):
    if row:
        row["is_private"] = bool(row.get("is_private"))
        row["member_count"] = int(row.get("member_count") or 0)
    return row


def _forum(row):
    if row:
        row["is_pinned"] = bool(row.get("is_pinned"))
    return row


def _refresh_member_count(cursor, club_id: int) -> None:
    cursor.execute("""
        UPDATE book_clubs
        SET member_count = (SELECT COUNT(*) FROM book_club_members WHERE club_id = ?),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
    """, (club_id, club_id))


# ======================
# BOOK CLUBS
# ======================

def list_public_clubs() -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT bc.*, u.username AS creator_username
        FROM book_clubs bc
        JOIN users u ON bc.creator_id = u.id
        WHERE bc.is_private = ?
        ORDER BY bc.created_at DESC, bc.id DESC
    """, (False,))
    return [_club(row) for row in rows]


def get_club(club_id: int) -> Dict[str, Any]:
    club = db.query_one("""
        SELECT bc.*, u.username AS creator_username, u.full_name AS creator_name
        FROM book_clubs bc
        JOIN users u ON bc.creator_id = u.id
        WHERE bc.id = ?
    """, (club_id,))
    if not club:
        raise NotFoundError("Book club not found")
    members = db.query_all("""
        SELECT u.id, u.username, u.full_name, p.avatar_url, bcm.role, bcm.joined_at
        FROM book_club_members bcm
        JOIN users u ON bcm.user_id = u.id
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE bcm.club_id = ?
        ORDER BY bcm.joined_at ASC, bcm.id ASC
    """, (club_id,))
    current_book = db.query_one("""
        SELECT b.*, bcb.start_date, bcb.end_date
        FROM book_club_books bcb
        JOIN books b ON bcb.book_id = b.id
        WHERE bcb.club_id = ? AND bcb.is_current = ?
    """, (club_id, True))
    return {
        "club": _club(club),
        "members": members,
        "currentBook": db.with_money(current_book, "price"),
    }


def create_club(creator_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("Book club name is required")
    with db.transaction() as c:
        club_id = db.insert_returning_id(c, """
            INSERT INTO book_clubs (name, description, creator_id, is_private)
            VALUES (?, ?, ?, ?)
        """, (name, data.get("description"), creator_id, bool(data.get("is_private", False))))
        c.execute(
            "INSERT INTO book_club_members (club_id, user_id, role) VALUES (?, ?, 'admin')",
            (club_id, creator_id),
        )
        _refresh_member_count(c, club_id)
        record_activity(creator_id, "create_club", {"club_id": club_id, "name": name}, cursor=c)
        c.execute("SELECT * FROM book_clubs WHERE id = ?", (club_id,))
        club = _club(db.fetch_one(c))
    logger.info(f"User {creator_id} created book club {club_id}")
    return club


def join_club(club_id: int, user_id: int) -> bool:
    """Join a club. Returns False when the user was already a member."""
    with db.transaction() as c:
        c.execute("SELECT id, name FROM book_clubs WHERE id = ?", (club_id,))
        club = db.fetch_one(c)
        if not club:
            raise NotFoundError("Book club not found")
        c.execute("""
            INSERT INTO book_club_members (club_id, user_id) VALUES (?, ?)
            ON CONFLICT (club_id, user_id) DO NOTHING
        """, (club_id, user_id))
        joined = c.rowcount == 1
        if joined:
            _refresh_member_count(c, club_id)
            record_activity(user_id, "join_club", {"club_id": club_id, "name": club["name"]}, cursor=c)
    return joined


def leave_club(club_id: int, user_id: int) -> bool:
    with db.transaction() as c:
        c.execute("DELETE FROM book_club_members WHERE club_id = ? AND user_id = ?", (club_id, user_id))
        left = c.rowcount > 0
        if left:
            _refresh_member_count(c, club_id)
    return left


def set_current_book(club_id: int, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    book_id = parse_int(data.get("book_id"), "book_id")
    with db.transaction() as c:
        c.execute("SELECT role FROM book_club_members WHERE club_id = ? AND user_id = ?", (club_id, user_id))
        membership = db.fetch_one(c)
        if not membership or membership["role"] not in CLUB_MANAGER_ROLES:
            raise AuthorizationPolicy.deny("book_club", "Only admins and moderators can set current book")
        c.execute("SELECT id FROM books WHERE id = ?", (book_id,))
        if not c.fetchone():
            raise NotFoundError("Book not found")
        c.execute("UPDATE book_club_books SET is_current = ? WHERE club_id = ?", (False, club_id))
        entry_id = db.insert_returning_id(c, """
            INSERT INTO book_club_books (club_id, book_id, start_date, end_date, is_current)
            VALUES (?, ?, ?, ?, ?)
        """, (club_id, book_id, data.get("start_date"), data.get("end_date"), True))
        c.execute("SELECT * FROM book_club_books WHERE id = ?", (entry_id,))
        entry = db.fetch_one(c)
    entry["is_current"] = bool(entry["is_current"])
    return entry


def list_user_clubs(user_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT bc.*, bcm.role, bcm.joined_at
        FROM book_clubs bc
        JOIN book_club_members bcm ON bc.id = bcm.club_id
        WHERE bcm.user_id = ?
        ORDER BY bcm.joined_at DESC, bcm.id DESC
    """, (user_id,))
    return [_club(row) for row in rows]


# ======================
# FORUMS
# ======================

FORUM_SELECT = """
    SELECT f.*, u.username AS creator_username, u.full_name AS creator_name,
           b.title AS book_title, bc.name AS club_name
    FROM forums f
    JOIN users u ON f.creator_id = u.id
    LEFT JOIN books b ON f.book_id = b.id
    LEFT JOIN book_clubs bc ON f.club_id = bc.id
"""


def list_forums(book_id: Any = None, club_id: Any = None) -> List[Dict[str, Any]]:
    sql = FORUM_SELECT + " WHERE 1=1"
    params: List[Any] = []
    book_id = parse_int(book_id, "book_id", required=False)
    club_id = parse_int(club_id, "club_id", required=False)
    if book_id is not None:
        sql += " AND f.book_id = ?"
        params.append(book_id)
    if club_id is not None:
        sql += " AND f.club_id = ?"
        params.append(club_id)
    sql += " ORDER BY f.is_pinned DESC, f.updated_at DESC, f.id DESC"
    return [_forum(row) for row in db.query_all(sql, params)]


def get_forum(forum_id: int) -> Dict[str, Any]:
    """Forum with its replies (oldest first). Counts as a view."""
    with db.transaction() as c:
        c.execute("UPDATE forums SET view_count = view_count + 1 WHERE id = ?", (forum_id,))
        if c.rowcount == 0:
            raise NotFoundError("Forum not found")
        c.execute(FORUM_SELECT + " WHERE f.id = ?", (forum_id,))
        forum = _forum(db.fetch_one(c))
        c.execute("""
            SELECT fr.*, u.username, u.full_name, p.avatar_url
            FROM forum_replies fr
            JOIN users u ON fr.user_id = u.id
            LEFT JOIN user_profiles p ON u.id = p.user_id
            WHERE fr.forum_id = ?
            ORDER BY fr.created_at ASC, fr.id ASC
        """, (forum_id,))
        replies = db.fetch_all(c)
    return {"forum": forum, "replies": replies}


def create_forum(creator_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    title = str(data.get("title") or "").strip()
    description = str(data.get("description") or "").strip()
    if not title or not description:
        raise ValidationError("Title and description are required")
    book_id = parse_int(data.get("book_id"), "book_id", required=False)
    club_id = parse_int(data.get("club_id"), "club_id", required=False)

    with db.transaction() as c:
        if book_id is not None:
            c.execute("SELECT id FROM books WHERE id = ?", (book_id,))
            if not c.fetchone():
                raise NotFoundError("Book not found")
        if club_id is not None:
            c.execute("SELECT id FROM book_clubs WHERE id = ?", (club_id,))
            if not c.fetchone():
                raise NotFoundError("Book club not found")
        forum_id = db.insert_returning_id(c, """
            INSERT INTO forums (title, description, book_id, club_id, creator_id)
            VALUES (?, ?, ?, ?, ?)
        """, (title, description, book_id, club_id, creator_id))
        record_activity(creator_id, "create_forum", {"forum_id": forum_id, "title": title}, cursor=c)
        c.execute("SELECT * FROM forums WHERE id = ?", (forum_id,))
        forum = _forum(db.fetch_one(c))
    return forum


def add_reply(forum_id: int, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    content = str(data.get("content") or "").strip()
    if not content:
        raise ValidationError("Content is required")
    parent_reply_id = parse_int(data.get("parent_reply_id"), "parent_reply_id", required=False)

    with db.transaction() as c:
        c.execute("SELECT id FROM forums WHERE id = ?", (forum_id,))
        if not c.fetchone():
            raise NotFoundError("Forum not found")
        if parent_reply_id is not None:
            c.execute("SELECT forum_id FROM forum_replies WHERE id = ?", (parent_reply_id,))
            parent = c.fetchone()
            if not parent or parent[0] != forum_id:
                raise ValidationError("Parent reply does not belong to this forum")
        reply_id = db.insert_returning_id(c, """
            INSERT INTO forum_replies (forum_id, user_id, parent_reply_id, content)
            VALUES (?, ?, ?, ?)
        """, (forum_id, user_id, parent_reply_id, content))
        c.execute("""
            UPDATE forums SET reply_count = reply_count + 1, updated_at = CURRENT_TIMESTAMP WHERE id = ?
        """, (forum_id,))
        c.execute("SELECT * FROM forum_replies WHERE id = ?", (reply_id,))
        return db.fetch_one(c)


def like_reply(reply_id: int) -> int:
    with db.transaction() as c:
        c.execute("UPDATE forum_replies SET likes = likes + 1 WHERE id = ?", (reply_id,))
        if c.rowcount == 0:
            raise NotFoundError("Reply not found")
        c.execute("SELECT likes FROM forum_replies WHERE id = ?", (reply_id,))
        return c.fetchone()[0]


def delete_forum(forum_id: int, user_id: int) -> None:
    rowcount = db.execute("DELETE FROM forums WHERE id = ? AND creator_id = ?", (forum_id, user_id))
    if rowcount == 0:
        raise AuthorizationPolicy.deny("forum", "Forum not found or not authorized")


def delete_reply(reply_id: int, user_id: int) -> None:
    with db.transaction() as c:
        c.execute("SELECT forum_id FROM forum_replies WHERE id = ? AND user_id = ?", (reply_id, user_id))
        row = c.fetchone()
        if not row:
            raise AuthorizationPolicy.deny("forum_reply", "Reply not found or not authorized")
        forum_id = row[0]
        c.execute("DELETE FROM forum_replies WHERE id = ?", (reply_id,))
        # Nested replies go with their parent
        c.execute("""
            UPDATE forums
            SET reply_count = (SELECT COUNT(*) FROM forum_replies WHERE forum_id = ?)
            WHERE id = ?
        """, (forum_id, forum_id))
