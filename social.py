# social.py - Profiles, follows, activity feed and direct messages
from typing import Any, Dict, List, Optional

import db
from error_handling import NotFoundError, ValidationError, parse_int
from security import AuthorizationPolicy
from utils import logger

FEED_LIMIT = 50
USER_ACTIVITY_LIMIT = 30


# ======================
# ACTIVITY
# ======================

def _activity(row):
    if row:
        row["activity_data"] = db.load_json(row.get("activity_data"), {})
        row["is_public"] = bool(row.get("is_public"))
    return row


def record_activity(user_id: int, activity_type: str, activity_data: Optional[Dict[str, Any]] = None,
                    is_public: bool = True, cursor=None) -> int:
    """Append an activity row, optionally inside the caller's transaction."""
    params = (user_id, activity_type, db.dump_json(activity_data or {}), bool(is_public))
    sql = "INSERT INTO activity_feed (user_id, activity_type, activity_data, is_public) VALUES (?, ?, ?, ?)"
    if cursor is not None:
        return db.insert_returning_id(cursor, sql, params)
    with db.transaction() as c:
        return db.insert_returning_id(c, sql, params)


def create_activity(user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    activity_type = data.get("activity_type")
    if not activity_type:
        raise ValidationError("Activity type is required")
    is_public = data.get("is_public")
    activity_id = record_activity(
        user_id,
        activity_type,
        data.get("activity_data"),
        True if is_public is None else bool(is_public),
    )
    return _activity(db.query_one("SELECT * FROM activity_feed WHERE id = ?", (activity_id,)))


def get_feed(user_id: int) -> List[Dict[str, Any]]:
    """The user's own public activity plus that of everyone they follow."""
    rows = db.query_all(f"""
        SELECT af.*, u.username, u.full_name, p.avatar_url
        FROM activity_feed af
        JOIN users u ON af.user_id = u.id
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE af.is_public = ?
          AND (af.user_id = ?
               OR af.user_id IN (SELECT following_id FROM user_follows WHERE follower_id = ?))
        ORDER BY af.created_at DESC, af.id DESC
        LIMIT {FEED_LIMIT}
    """, (True, user_id, user_id))
    return [_activity(row) for row in rows]


def get_user_activity(user_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all(f"""
        SELECT af.*, u.username, u.full_name, p.avatar_url
        FROM activity_feed af
        JOIN users u ON af.user_id = u.id
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE af.user_id = ? AND af.is_public = ?
        ORDER BY af.created_at DESC, af.id DESC
        LIMIT {USER_ACTIVITY_LIMIT}
    """, (user_id, True))
    return [_activity(row) for row in rows]


# ======================
# PROFILES
# ======================

def _normalize_genres(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("favorite_genres must be a list of genres")
    return [str(genre).strip() for genre in value if str(genre).strip()]


def get_profile(username: str) -> Dict[str, Any]:
    user = db.query_one("""
        SELECT u.id, u.username, u.email, u.full_name, u.created_at,
               p.bio, p.avatar_url, p.location, p.favorite_genres, p.reading_goal, p.books_read
        FROM users u
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE u.username = ?
    """, (username,))
    if not user:
        raise NotFoundError("User not found")
    user["favorite_genres"] = db.load_json(user.get("favorite_genres"), [])
    user["books_read"] = user.get("books_read") or 0

    books = db.query_all("SELECT * FROM books WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user["id"],))
    counts = db.query_one("""
        SELECT (SELECT COUNT(*) FROM user_follows WHERE following_id = ?) AS followers,
               (SELECT COUNT(*) FROM user_follows WHERE follower_id = ?) AS following,
               (SELECT COUNT(*) FROM marketplace_listings WHERE user_id = ? AND status = 'active') AS active_listings
    """, (user["id"], user["id"], user["id"]))
    return {
        "user": user,
        "books": [db.with_money(book, "price") for book in books],
        "followers": int(counts["followers"]),
        "following": int(counts["following"]),
        "activeListings": int(counts["active_listings"]),
    }


def update_profile(user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    genres = _normalize_genres(data.get("favorite_genres"))
    reading_goal = parse_int(data.get("reading_goal"), "reading_goal", required=False, minimum=0)
    params = (
        user_id,
        data.get("bio"),
        data.get("avatar_url"),
        data.get("location"),
        db.dump_json(genres),
        reading_goal,
    )
    db.execute("""
        INSERT INTO user_profiles (user_id, bio, avatar_url, location, favorite_genres, reading_goal)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id) DO UPDATE SET
            bio = excluded.bio,
            avatar_url = COALESCE(excluded.avatar_url, user_profiles.avatar_url),
            location = excluded.location,
            favorite_genres = excluded.favorite_genres,
            reading_goal = excluded.reading_goal,
            updated_at = CURRENT_TIMESTAMP
    """, params)
    profile = db.query_one("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,))
    profile["favorite_genres"] = db.load_json(profile.get("favorite_genres"), [])
    return profile


# ======================
# FOLLOWS
# ======================

def follow_user(follower_id: int, following_id: int) -> bool:
    """Follow a user. Returns False when the follow already existed."""
    if follower_id == following_id:
        raise ValidationError("Cannot follow yourself")
    if not db.get_user_by_id(following_id):
        raise NotFoundError("User not found")
    with db.transaction() as c:
        c.execute("""
            INSERT INTO user_follows (follower_id, following_id) VALUES (?, ?)
            ON CONFLICT (follower_id, following_id) DO NOTHING
        """, (follower_id, following_id))
        created = c.rowcount == 1
        if created:
            record_activity(follower_id, "follow", {"followed_user_id": following_id}, cursor=c)
    if created:
        logger.info(f"User {follower_id} followed user {following_id}")
    return created


def unfollow_user(follower_id: int, following_id: int) -> bool:
    rowcount = db.execute(
        "DELETE FROM user_follows WHERE follower_id = ? AND following_id = ?",
        (follower_id, following_id),
    )
    return rowcount > 0


def is_following(follower_id: int, following_id: int) -> bool:
    row = db.query_one(
        "SELECT 1 AS found FROM user_follows WHERE follower_id = ? AND following_id = ?",
        (follower_id, following_id),
    )
    return row is not None


def list_followers(user_id: int) -> List[Dict[str, Any]]:
    return db.query_all("""
        SELECT u.id, u.username, u.full_name, p.avatar_url
        FROM user_follows uf
        JOIN users u ON uf.follower_id = u.id
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE uf.following_id = ?
        ORDER BY uf.created_at DESC, uf.id DESC
    """, (user_id,))


def list_following(user_id: int) -> List[Dict[str, Any]]:
    return db.query_all("""
        SELECT u.id, u.username, u.full_name, p.avatar_url
        FROM user_follows uf
        JOIN users u ON uf.following_id = u.id
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE uf.follower_id = ?
        ORDER BY uf.created_at DESC, uf.id DESC
    """, (user_id,))


# ======================
# MESSAGES
# ======================

def _message(row):
    if row:
        row["is_read"] = bool(row.get("is_read"))
    return row


def _text(value):
    return None if value is None else str(value)


def send_message(sender_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    if not data.get("recipient_id") or not data.get("message"):
        raise ValidationError("Recipient and message are required")
    recipient_id = parse_int(data.get("recipient_id"), "recipient_id")
    listing_id = parse_int(data.get("listing_id"), "listing_id", required=False)
    if not db.get_user_by_id(recipient_id):
        raise NotFoundError("Recipient not found")

    with db.transaction() as c:
        if listing_id is not None:
            c.execute("SELECT id FROM marketplace_listings WHERE id = ?", (listing_id,))
            if not c.fetchone():
                raise NotFoundError("Listing not found")
        message_id = db.insert_returning_id(c, """
            INSERT INTO messages (sender_id, recipient_id, subject, message, listing_id)
            VALUES (?, ?, ?, ?, ?)
        """, (sender_id, recipient_id, _text(data.get("subject")), str(data["message"]), listing_id))
        c.execute("SELECT * FROM messages WHERE id = ?", (message_id,))
        return _message(db.fetch_one(c))


def list_conversations(user_id: int) -> List[Dict[str, Any]]:
    """Latest message exchanged with each counterpart, most recent first."""
    rows = db.query_all("""
        SELECT m.id, m.subject, m.message, m.created_at, m.is_read, m.sender_id,
               u.id AS other_user_id, u.username AS other_username,
               u.full_name AS other_full_name, p.avatar_url AS other_avatar
        FROM messages m
        JOIN users u ON u.id = CASE WHEN m.sender_id = ? THEN m.recipient_id ELSE m.sender_id END
        LEFT JOIN user_profiles p ON u.id = p.user_id
        WHERE m.sender_id = ? OR m.recipient_id = ?
        ORDER BY m.created_at DESC, m.id DESC
    """, (user_id, user_id, user_id))
    latest: Dict[int, Dict[str, Any]] = {}
    for row in rows:
        if row["other_user_id"] not in latest:
            latest[row["other_user_id"]] = _message(row)
    return list(latest.values())


def get_conversation(user_id: int, other_user_id: int) -> List[Dict[str, Any]]:
    """Messages between two users, oldest first. Marks incoming ones read."""
    rows = db.query_all("""
        SELECT m.*, sender.username AS sender_username, recipient.username AS recipient_username
        FROM messages m
        JOIN users sender ON m.sender_id = sender.id
        JOIN users recipient ON m.recipient_id = recipient.id
        WHERE (m.sender_id = ? AND m.recipient_id = ?)
           OR (m.sender_id = ? AND m.recipient_id = ?)
        ORDER BY m.created_at ASC, m.id ASC
    """, (user_id, other_user_id, other_user_id, user_id))
    db.execute(
        "UPDATE messages SET is_read = ? WHERE sender_id = ? AND recipient_id = ? AND is_read = ?",
        (True, other_user_id, user_id, False),
    )
    return [_message(row) for row in rows]


def unread_count(user_id: int) -> int:
    row = db.query_one(
        "SELECT COUNT(*) AS count FROM messages WHERE recipient_id = ? AND is_read = ?",
        (user_id, False),
    )
    return int(row["count"])


def mark_read(message_id: int, user_id: int) -> None:
    rowcount = db.execute(
        "UPDATE messages SET is_read = ? WHERE id = ? AND recipient_id = ?",
        (True, message_id, user_id),
    )
    if rowcount == 0:
        raise AuthorizationPolicy.deny("message", "Message not found")


def delete_message(message_id: int, user_id: int) -> None:
    rowcount = db.execute(
        "DELETE FROM messages WHERE id = ? AND (sender_id = ? OR recipient_id = ?)",
        (message_id, user_id, user_id),
    )
    if rowcount == 0:
        raise AuthorizationPolicy.deny("message", "Message not found")
