# negotiations.py - Price offers against sell listings
from typing import Any, Dict, List

import db
from error_handling import NotFoundError, ValidationError, parse_int, parse_price, require_fields
from observability import log_marketplace_event
from security import AuthorizationPolicy

OPEN_STATUSES = ("pending", "countered")


def _negotiation(row):
    return db.with_money(row, "original_price", "offered_price", "counter_price", "current_price")


def _load_open_for_seller(cursor, negotiation_id: int, seller_id: int) -> Dict[str, Any]:
    cursor.execute(
        "SELECT * FROM negotiations WHERE id = ? AND seller_id = ?" + db.for_update(),
        (negotiation_id, seller_id),
    )
    negotiation = _negotiation(db.fetch_one(cursor))
    if not negotiation:
        raise AuthorizationPolicy.deny("negotiation", "Negotiation not found")
    if negotiation["status"] not in OPEN_STATUSES:
        raise ValidationError(f"Negotiation is already {negotiation['status']}")
    return negotiation


def _reload(cursor, negotiation_id: int) -> Dict[str, Any]:
    cursor.execute("SELECT * FROM negotiations WHERE id = ?", (negotiation_id,))
    return _negotiation(db.fetch_one(cursor))


def make_offer(buyer_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(data, ("listing_id", "offered_price"), "Listing ID and offered price are required")
    listing_id = parse_int(data.get("listing_id"), "listing_id")
    offered_price = parse_price(data.get("offered_price"), "Offered price")

    with db.transaction() as c:
        c.execute("""
            SELECT * FROM marketplace_listings
            WHERE id = ? AND listing_type = 'sell' AND status = 'active'
        """, (listing_id,))
        listing = db.with_money(db.fetch_one(c), "price")
        if not listing:
            raise NotFoundError("Listing not found or not available for negotiation")
        if listing["user_id"] == buyer_id:
            raise ValidationError("Cannot negotiate on your own listing")

        negotiation_id = db.insert_returning_id(c, """
            INSERT INTO negotiations (listing_id, buyer_id, seller_id, original_price, offered_price, message)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (listing_id, buyer_id, listing["user_id"], listing["price"], offered_price, data.get("message")))
        negotiation = _reload(c, negotiation_id)

    log_marketplace_event("offer_made", listing_id=listing_id, user_id=buyer_id,
                          negotiation_id=negotiation_id, offered_price=offered_price)
    return negotiation


def counter_offer(negotiation_id: int, seller_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("counter_price") in (None, ""):
        raise ValidationError("Counter price is required")
    counter_price = parse_price(data.get("counter_price"), "Counter price")

    with db.transaction() as c:
        negotiation = _load_open_for_seller(c, negotiation_id, seller_id)
        c.execute("""
            UPDATE negotiations
            SET counter_price = ?, status = 'countered', message = COALESCE(?, message),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (counter_price, data.get("message"), negotiation_id))
        updated = _reload(c, negotiation_id)

    log_marketplace_event("offer_countered", listing_id=negotiation["listing_id"], user_id=seller_id,
                          negotiation_id=negotiation_id, counter_price=counter_price)
    return updated


def accept_offer(negotiation_id: int, seller_id: int) -> Dict[str, Any]:
    """Accept the buyer's offer and reprice the listing.

    The listing takes the buyer's ``offered_price`` even when the seller had
    countered; it stays active and still has to be purchased.
    """
    with db.transaction() as c:
        negotiation = _load_open_for_seller(c, negotiation_id, seller_id)
        c.execute("""
            UPDATE marketplace_listings
            SET price = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'active' AND listing_type = 'sell'
        """, (negotiation["offered_price"], negotiation["listing_id"]))
        if c.rowcount != 1:
            raise NotFoundError("Listing is no longer available")
        c.execute("""
            UPDATE negotiations SET status = 'accepted', updated_at = CURRENT_TIMESTAMP WHERE id = ?
        """, (negotiation_id,))
        updated = _reload(c, negotiation_id)

    log_marketplace_event("offer_accepted", listing_id=negotiation["listing_id"], user_id=seller_id,
                          negotiation_id=negotiation_id, price=negotiation["offered_price"])
    return updated


def reject_offer(negotiation_id: int, seller_id: int) -> Dict[str, Any]:
    with db.transaction() as c:
        negotiation = _load_open_for_seller(c, negotiation_id, seller_id)
        c.execute("""
            UPDATE negotiations SET status = 'rejected', updated_at = CURRENT_TIMESTAMP WHERE id = ?
        """, (negotiation_id,))
        updated = _reload(c, negotiation_id)

    log_marketplace_event("offer_rejected", listing_id=negotiation["listing_id"], user_id=seller_id,
                          negotiation_id=negotiation_id)
    return updated


def list_for_listing(listing_id: int, seller_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT n.*, u.username AS buyer_name
        FROM negotiations n
        JOIN users u ON n.buyer_id = u.id
        WHERE n.listing_id = ? AND n.seller_id = ?
        ORDER BY n.created_at DESC, n.id DESC
    """, (listing_id, seller_id))
    return [_negotiation(row) for row in rows]


def list_sent(buyer_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT n.*, b.title, b.author, ml.price AS current_price, ml.status AS listing_status,
               u.username AS seller_name
        FROM negotiations n
        JOIN marketplace_listings ml ON n.listing_id = ml.id
        JOIN books b ON ml.book_id = b.id
        JOIN users u ON n.seller_id = u.id
        WHERE n.buyer_id = ?
        ORDER BY n.created_at DESC, n.id DESC
    """, (buyer_id,))
    return [_negotiation(row) for row in rows]


def list_received(seller_id: int) -> List[Dict[str, Any]]:
    rows = db.query_all("""
        SELECT n.*, b.title, b.author, ml.price AS current_price, ml.status AS listing_status,
               u.username AS buyer_name
        FROM negotiations n
        JOIN marketplace_listings ml ON n.listing_id = ml.id
        JOIN books b ON ml.book_id = b.id
        JOIN users u ON n.buyer_id = u.id
        WHERE n.seller_id = ?
        ORDER BY n.created_at DESC, n.id DESC
    """, (seller_id,))
    return [_negotiation(row) for row in rows]
