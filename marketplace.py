# marketplace.py - Listings, exchange requests and purchases
"""
Marketplace state model.

A listing starts ``active``. It ends ``sold`` through a purchase, ``exchanged``
through an accepted exchange request, or ``cancelled`` by its seller. Both
consuming paths flip the status with a conditional UPDATE inside a database
transaction, so at most one of them can win for a given listing.
"""
from typing import Any, Dict, List, Optional

import db
from error_handling import (
    NotFoundError,
    ValidationError,
    parse_int,
    parse_price,
    require_fields,
    validate_choice,
)
from observability import log_marketplace_event
from security import AuthorizationPolicy
from utils import logger

LISTING_TYPES = {"sell", "exchange"}
CONDITIONS = {"new", "like-new", "good", "fair", "poor"}
LISTING_STATUSES = {"active", "sold", "exchanged", "cancelled"}
EXCHANGE_DECISIONS = {"accepted", "rejected"}

LISTING_SELECT = """
    SELECT ml.*, b.title, b.author, b.genre, b.pages, b.isbn, b.cover_url,
           u.username AS seller_name
    FROM marketplace_listings ml
    JOIN books b ON ml.book_id = b.id
    JOIN users u ON ml.user_id = u.id
"""


def _listing(row):
    return db.with_money(row, "price")


def _transaction(row):
    return db.with_money(row, "amount", "price")


def _fetch_listing(cursor, listing_id: int) -> Optional[Dict[str, Any]]:
    cursor.execute(LISTING_SELECT + " WHERE ml.id = ?", (listing_id,))
    return _listing(db.fetch_one(cursor))


# ======================
# LISTINGS
# ======================

def list_listings(listing_type: Optional[str] = None, condition: Optional[str] = None,
                  max_price: Any = None, genre: Optional[str] = None) -> List[Dict[str, Any]]:
    """Active listings, newest first. Every filter is optional."""
    sql = LISTING_SELECT + " WHERE ml.status = 'active'"
    params: List[Any] = []
    if listing_type:
        sql += " AND ml.listing_type = ?"
        params.append(listing_type)
    if condition:
        sql += " AND ml.condition = ?"
        params.append(condition)
    if max_price not in (None, ""):
        sql += " AND ml.price <= ?"
        params.append(parse_price(max_price, "max_price"))
    if genre:
        sql += " AND LOWER(b.genre) LIKE ?"
        params.append(f"%{genre.lower()}%")
    sql += " ORDER BY ml.created_at DESC, ml.id DESC"
    return [_listing(row) for row in db.query_all(sql, params)]


def get_listing(listing_id: int) -> Dict[str, Any]:
    row = db.query_one(LISTING_SELECT + " WHERE ml.id = ?", (listing_id,))
    if not row:
        raise NotFoundError("Listing not found")
    return _listing(row)


def list_seller_listings(seller_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all(
        LISTING_SELECT + " WHERE ml.user_id = ? ORDER BY ml.created_at DESC, ml.id DESC",
        (seller_id,),
    )
    return [_listing(row) for row in rows]


def create_listing(seller_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, ("book_id", "listing_type", "condition"),
                   "Book, listing type, and condition are required")
    book_id = parse_int(data.get("book_id"), "book_id")
    listing_type = validate_choice(data.get("listing_type"), LISTING_TYPES, "listing_type")
    condition = validate_choice(data.get("condition"), CONDITIONS, "condition")

    price = None
    if listing_type == "sell":
        if data.get("price") in (None, ""):
            raise ValidationError("Price is required for sell listings")
        price = parse_price(data.get("price"), "Price")

    with db.transaction() as c:
        c.execute("SELECT id FROM books WHERE id = ? AND user_id = ?", (book_id, seller_id))
        if not c.fetchone():
            raise AuthorizationPolicy.deny("book")
        listing_id = db.insert_returning_id(c, """
            INSERT INTO marketplace_listings (user_id, book_id, listing_type, price, condition, description)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (seller_id, book_id, listing_type, price, condition, data.get("description")))
        listing = _fetch_listing(c, listing_id)

    log_marketplace_event("listing_created", listing_id=listing_id, user_id=seller_id,
                          listing_type=listing_type, price=price)
    return listing


def update_listing(listing_id: int, seller_id: int, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Patch price, condition, description or cancel. Only the seller may do it."""
    with db.transaction() as c:
        c.execute(
            "SELECT * FROM marketplace_listings WHERE id = ? AND user_id = ?" + db.for_update(),
            (listing_id, seller_id),
        )
        current = _listing(db.fetch_one(c))
        if not current:
            raise AuthorizationPolicy.deny("listing")
        if current["status"] != "active":
            raise ValidationError(f"Listing is already {current['status']} and can no longer be changed")

        price = current["price"]
        if patch.get("price") not in (None, ""):
            if current["listing_type"] != "sell":
                raise ValidationError("Exchange listings do not carry a price")
            price = parse_price(patch.get("price"), "Price")

        condition = current["condition"]
        if patch.get("condition"):
            condition = validate_choice(patch.get("condition"), CONDITIONS, "condition")

        description = current["description"]
        if patch.get("description") is not None:
            description = patch.get("description")

        status = current["status"]
        if patch.get("status"):
            status = validate_choice(patch.get("status"), LISTING_STATUSES, "status")
            if status not in ("active", "cancelled"):
                raise ValidationError("Listings are marked sold or exchanged by completing a purchase or exchange")

        c.execute("""
            UPDATE marketplace_listings
            SET price = ?, condition = ?, description = ?, status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'active'
        """, (price, condition, description, status, listing_id))
        if c.rowcount != 1:
            raise NotFoundError("Listing not found or not available")
        listing = _fetch_listing(c, listing_id)

    if status == "cancelled":
        log_marketplace_event("listing_cancelled", listing_id=listing_id, user_id=seller_id)
    return listing


def delete_listing(listing_id: int, seller_id: int) -> None:
    rowcount = db.execute(
        "DELETE FROM marketplace_listings WHERE id = ? AND user_id = ?",
        (listing_id, seller_id),
    )
    if rowcount == 0:
        raise AuthorizationPolicy.deny("listing")
    logger.info(f"User {seller_id} deleted listing {listing_id}")


# ======================
# EXCHANGE REQUESTS
# ======================

def propose_exchange(requester_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, ("listing_id", "offered_book_id"), "Listing and offered book are required")
    listing_id = parse_int(data.get("listing_id"), "listing_id")
    offered_book_id = parse_int(data.get("offered_book_id"), "offered_book_id")

    with db.transaction() as c:
        c.execute("""
            SELECT * FROM marketplace_listings
            WHERE id = ? AND listing_type = 'exchange' AND status = 'active'
        """, (listing_id,))
        listing = db.fetch_one(c)
        if not listing:
            raise NotFoundError("Exchange listing not found or not available")
        if listing["user_id"] == requester_id:
            raise ValidationError("Cannot request an exchange on your own listing")

        c.execute("SELECT id FROM books WHERE id = ? AND user_id = ?", (offered_book_id, requester_id))
        if not c.fetchone():
            raise AuthorizationPolicy.deny("book", "Offered book not found or does not belong to you")

        request_id = db.insert_returning_id(c, """
            INSERT INTO exchange_requests (listing_id, requester_id, offered_book_id, message)
            VALUES (?, ?, ?, ?)
        """, (listing_id, requester_id, offered_book_id, data.get("message")))
        c.execute("SELECT * FROM exchange_requests WHERE id = ?", (request_id,))
        exchange_request = db.fetch_one(c)

    log_marketplace_event("exchange_requested", listing_id=listing_id, user_id=requester_id,
                          request_id=request_id, offered_book_id=offered_book_id)
    return exchange_request


def respond_to_exchange(request_id: int, seller_id: int, decision: Any) -> Dict[str, Any]:
    """Accept or reject a pending exchange request on one of the seller's listings."""
    validate_choice(decision, EXCHANGE_DECISIONS, "status", "Status must be 'accepted' or 'rejected'")

    with db.transaction() as c:
        c.execute("""
            SELECT er.*, ml.user_id AS listing_owner_id
            FROM exchange_requests er
            JOIN marketplace_listings ml ON er.listing_id = ml.id
            WHERE er.id = ?
        """ + db.for_update(), (request_id,))
        exchange_request = db.fetch_one(c)
        if not exchange_request:
            raise NotFoundError("Exchange request not found")
        if exchange_request["listing_owner_id"] != seller_id:
            raise AuthorizationPolicy.deny("exchange_request")
        if exchange_request["status"] != "pending":
            raise ValidationError(f"Exchange request is already {exchange_request['status']}")

        listing_id = exchange_request["listing_id"]
        if decision == "accepted":
            c.execute("""
                UPDATE marketplace_listings
                SET status = 'exchanged', updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND status = 'active'
            """, (listing_id,))
            if c.rowcount != 1:
                raise NotFoundError("Listing is no longer available")

        c.execute("""
            UPDATE exchange_requests
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'pending'
        """, (decision, request_id))
        c.execute("SELECT * FROM exchange_requests WHERE id = ?", (request_id,))
        updated = db.fetch_one(c)

    log_marketplace_event(f"exchange_{decision}", listing_id=listing_id, user_id=seller_id,
                          request_id=request_id)
    return updated


def list_received_exchanges(seller_id: int) -> List[Dict[str, Any]]:
    return db.query_all("""
        SELECT er.*, lb.title AS listing_book_title, lb.author AS listing_book_author,
               ob.title AS offered_book_title, ob.author AS offered_book_author,
               u.username AS requester_name
        FROM exchange_requests er
        JOIN marketplace_listings ml ON er.listing_id = ml.id
        JOIN books lb ON ml.book_id = lb.id
        JOIN books ob ON er.offered_book_id = ob.id
        JOIN users u ON er.requester_id = u.id
        WHERE ml.user_id = ?
        ORDER BY er.created_at DESC, er.id DESC
    """, (seller_id,))


def list_sent_exchanges(requester_id: int) -> List[Dict[str, Any]]:
    return db.query_all("""
        SELECT er.*, lb.title AS listing_book_title, lb.author AS listing_book_author,
               ob.title AS offered_book_title, ob.author AS offered_book_author,
               u.username AS owner_name
        FROM exchange_requests er
        JOIN marketplace_listings ml ON er.listing_id = ml.id
        JOIN books lb ON ml.book_id = lb.id
        JOIN books ob ON er.offered_book_id = ob.id
        JOIN users u ON ml.user_id = u.id
        WHERE er.requester_id = ?
        ORDER BY er.created_at DESC, er.id DESC
    """, (requester_id,))


# ======================
# TRANSACTIONS
# ======================

def purchase_listing(buyer_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """Buy an active sell listing at its current price."""
    listing_id = parse_int(data.get("listing_id"), "listing_id")

    with db.transaction() as c:
        c.execute("""
            SELECT * FROM marketplace_listings
            WHERE id = ? AND listing_type = 'sell' AND status = 'active'
        """ + db.for_update(), (listing_id,))
        listing = _listing(db.fetch_one(c))
        if not listing:
            raise NotFoundError("Listing not found or not available")
        if listing["user_id"] == buyer_id:
            raise ValidationError("Cannot purchase your own listing")

        c.execute("""
            UPDATE marketplace_listings
            SET status = 'sold', updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'active'
        """, (listing_id,))
        if c.rowcount != 1:
            raise NotFoundError("Listing not found or not available")

        transaction_id = db.insert_returning_id(c, """
            INSERT INTO transactions (listing_id, buyer_id, seller_id, amount, status, completed_at)
            VALUES (?, ?, ?, ?, 'completed', CURRENT_TIMESTAMP)
        """, (listing_id, buyer_id, listing["user_id"], listing["price"]))
        c.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        record = _transaction(db.fetch_one(c))

    log_marketplace_event("listing_sold", listing_id=listing_id, user_id=buyer_id,
                          transaction_id=transaction_id, amount=record["amount"])
    return record


def list_purchases(buyer_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT t.*, b.title, b.author, ml.condition, u.username AS seller_name
        FROM transactions t
        JOIN marketplace_listings ml ON t.listing_id = ml.id
        JOIN books b ON ml.book_id = b.id
        JOIN users u ON t.seller_id = u.id
        WHERE t.buyer_id = ?
        ORDER BY t.created_at DESC, t.id DESC
    """, (buyer_id,))
    return [_transaction(row) for row in rows]


def list_sales(seller_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT t.*, b.title, b.author, ml.condition, u.username AS buyer_name
        FROM transactions t
        JOIN marketplace_listings ml ON t.listing_id = ml.id
        JOIN books b ON ml.book_id = b.id
        JOIN users u ON t.buyer_id = u.id
        WHERE t.seller_id = ?
        ORDER BY t.created_at DESC, t.id DESC
    """, (seller_id,))
    return [_transaction(row) for row in rows]
