import threading

import marketplace
from error_handling import ForbiddenError, NotFoundError, ValidationError
from support import DatabaseTestCase


class ListingTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.create_user("seller")
        self.buyer = self.create_user("buyer")
        self.book = self.create_book(self.seller["id"], genre="Science Fiction")

    def _sell(self, price=20, **extra):
        data = {"book_id": self.book["id"], "listing_type": "sell", "price": price, "condition": "good"}
        data.update(extra)
        return marketplace.create_listing(self.seller["id"], data)

    def test_sell_listing_requires_price(self):
        with self.assertRaises(ValidationError) as ctx:
            marketplace.create_listing(self.seller["id"], {
                "book_id": self.book["id"], "listing_type": "sell", "condition": "good",
            })
        self.assertEqual(ctx.exception.message, "Price is required for sell listings")

        with self.assertRaises(ValidationError):
            self._sell(price=0)
        with self.assertRaises(ValidationError):
            self._sell(price="-3")

    def test_exchange_listing_has_no_price(self):
        listing = marketplace.create_listing(self.seller["id"], {
            "book_id": self.book["id"], "listing_type": "exchange", "price": 99, "condition": "fair",
        })
        self.assertIsNone(listing["price"])
        self.assertEqual(listing["status"], "active")

    def test_listing_someone_elses_book_is_not_found(self):
        with self.assertRaises(NotFoundError) as ctx:
            marketplace.create_listing(self.buyer["id"], {
                "book_id": self.book["id"], "listing_type": "sell", "price": 5, "condition": "new",
            })
        self.assertEqual(ctx.exception.status_code, 404)

    def test_invalid_condition_rejected(self):
        with self.assertRaises(ValidationError):
            self._sell(condition="mint")

    def test_listing_joins_book_and_seller(self):
        listing = self._sell(price="20.499")
        self.assertEqual(listing["price"], 20.5)
        self.assertEqual(listing["title"], "Dune")
        self.assertEqual(listing["seller_name"], "seller")

    def test_browse_filters(self):
        other_book = self.create_book(self.seller["id"], title="Emma", genre="Romance")
        cheap = self._sell(price=8)
        pricey = marketplace.create_listing(self.seller["id"], {
            "book_id": other_book["id"], "listing_type": "sell", "price": 30, "condition": "new",
        })

        ids = [row["id"] for row in marketplace.list_listings()]
        self.assertEqual(ids, [pricey["id"], cheap["id"]])
        self.assertEqual([row["id"] for row in marketplace.list_listings(max_price="10")], [cheap["id"]])
        self.assertEqual([row["id"] for row in marketplace.list_listings(genre="SCIENCE")], [cheap["id"]])
        self.assertEqual([row["id"] for row in marketplace.list_listings(condition="new")], [pricey["id"]])
        self.assertEqual(marketplace.list_listings(listing_type="exchange"), [])
        with self.assertRaises(ValidationError):
            marketplace.list_listings(max_price="abc")

    def test_update_listing_by_owner_only(self):
        listing = self._sell()
        with self.assertRaises(NotFoundError):
            marketplace.update_listing(listing["id"], self.buyer["id"], {"price": 1})

        updated = marketplace.update_listing(listing["id"], self.seller["id"], {"price": 18, "condition": "fair"})
        self.assertEqual(updated["price"], 18.0)
        self.assertEqual(updated["condition"], "fair")

    def test_update_cannot_mark_sold(self):
        listing = self._sell()
        with self.assertRaises(ValidationError):
            marketplace.update_listing(listing["id"], self.seller["id"], {"status": "sold"})
        cancelled = marketplace.update_listing(listing["id"], self.seller["id"], {"status": "cancelled"})
        self.assertEqual(cancelled["status"], "cancelled")
        with self.assertRaises(ValidationError):
            marketplace.update_listing(listing["id"], self.seller["id"], {"price": 5})

    def test_delete_listing(self):
        listing = self._sell()
        with self.assertRaises(NotFoundError):
            marketplace.delete_listing(listing["id"], self.buyer["id"])
        marketplace.delete_listing(listing["id"], self.seller["id"])
        with self.assertRaises(NotFoundError):
            marketplace.get_listing(listing["id"])


class PurchaseTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.create_user("seller")
        self.buyer = self.create_user("buyer")
        book = self.create_book(self.seller["id"])
        self.listing = marketplace.create_listing(self.seller["id"], {
            "book_id": book["id"], "listing_type": "sell", "price": 20, "condition": "good",
        })

    def test_purchase_records_transaction_and_marks_sold(self):
        record = marketplace.purchase_listing(self.buyer["id"], {"listing_id": self.listing["id"]})
        self.assertEqual(record["amount"], 20.0)
        self.assertEqual(record["status"], "completed")
        self.assertEqual(record["seller_id"], self.seller["id"])
        self.assertIsNotNone(record["completed_at"])
        self.assertEqual(marketplace.get_listing(self.listing["id"])["status"], "sold")

        purchases = marketplace.list_purchases(self.buyer["id"])
        self.assertEqual(len(purchases), 1)
        self.assertEqual(purchases[0]["seller_name"], "seller")
        sales = marketplace.list_sales(self.seller["id"])
        self.assertEqual(sales[0]["buyer_name"], "buyer")

    def test_second_purchase_fails(self):
        marketplace.purchase_listing(self.buyer["id"], {"listing_id": self.listing["id"]})
        third = self.create_user("third")
        with self.assertRaises(NotFoundError):
            marketplace.purchase_listing(third["id"], {"listing_id": self.listing["id"]})
        count = self.db.query_one("SELECT COUNT(*) AS n FROM transactions")["n"]
        self.assertEqual(count, 1)

    def test_cannot_buy_own_listing(self):
        with self.assertRaises(ValidationError) as ctx:
            marketplace.purchase_listing(self.seller["id"], {"listing_id": self.listing["id"]})
        self.assertEqual(ctx.exception.message, "Cannot purchase your own listing")
        self.assertEqual(marketplace.get_listing(self.listing["id"])["status"], "active")

    def test_exchange_listing_cannot_be_bought(self):
        book = self.create_book(self.seller["id"], title="Emma")
        listing = marketplace.create_listing(self.seller["id"], {
            "book_id": book["id"], "listing_type": "exchange", "condition": "good",
        })
        with self.assertRaises(NotFoundError):
            marketplace.purchase_listing(self.buyer["id"], {"listing_id": listing["id"]})

    def test_concurrent_purchases_sell_once(self):
        buyers = [self.buyer] + [self.create_user(f"buyer{i}") for i in range(3)]
        barrier = threading.Barrier(len(buyers))
        results = []
        lock = threading.Lock()

        def attempt(user):
            barrier.wait()
            try:
                marketplace.purchase_listing(user["id"], {"listing_id": self.listing["id"]})
                outcome = "ok"
            except NotFoundError:
                outcome = "gone"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(user,)) for user in buyers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count("ok"), 1)
        self.assertEqual(results.count("gone"), len(buyers) - 1)
        count = self.db.query_one("SELECT COUNT(*) AS n FROM transactions")["n"]
        self.assertEqual(count, 1)


class ExchangeTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.owner = self.create_user("owner")
        self.requester = self.create_user("requester")
        book = self.create_book(self.owner["id"])
        self.offered = self.create_book(self.requester["id"], title="Emma")
        self.listing = marketplace.create_listing(self.owner["id"], {
            "book_id": book["id"], "listing_type": "exchange", "condition": "good",
        })

    def _propose(self):
        return marketplace.propose_exchange(self.requester["id"], {
            "listing_id": self.listing["id"], "offered_book_id": self.offered["id"], "message": "Swap?",
        })

    def test_accept_marks_listing_exchanged(self):
        request = self._propose()
        self.assertEqual(request["status"], "pending")
        updated = marketplace.respond_to_exchange(request["id"], self.owner["id"], "accepted")
        self.assertEqual(updated["status"], "accepted")
        self.assertEqual(marketplace.get_listing(self.listing["id"])["status"], "exchanged")

    def test_reject_leaves_listing_active(self):
        request = self._propose()
        updated = marketplace.respond_to_exchange(request["id"], self.owner["id"], "rejected")
        self.assertEqual(updated["status"], "rejected")
        self.assertEqual(marketplace.get_listing(self.listing["id"])["status"], "active")

    def test_only_listing_owner_may_respond(self):
        request = self._propose()
        with self.assertRaises(ForbiddenError):
            marketplace.respond_to_exchange(request["id"], self.requester["id"], "accepted")

    def test_completed_is_not_a_valid_decision(self):
        request = self._propose()
        with self.assertRaises(ValidationError):
            marketplace.respond_to_exchange(request["id"], self.owner["id"], "completed")

    def test_responding_twice_fails(self):
        request = self._propose()
        marketplace.respond_to_exchange(request["id"], self.owner["id"], "rejected")
        with self.assertRaises(ValidationError):
            marketplace.respond_to_exchange(request["id"], self.owner["id"], "accepted")

    def test_second_accept_after_exchange_fails(self):
        first = self._propose()
        second = self._propose()
        marketplace.respond_to_exchange(first["id"], self.owner["id"], "accepted")
        with self.assertRaises(NotFoundError):
            marketplace.respond_to_exchange(second["id"], self.owner["id"], "accepted")
        pending = [r for r in marketplace.list_received_exchanges(self.owner["id"]) if r["id"] == second["id"]]
        self.assertEqual(pending[0]["status"], "pending")

    def test_concurrent_accepts_exchange_once(self):
        requests = [self._propose() for _ in range(4)]
        barrier = threading.Barrier(len(requests))
        results = []
        lock = threading.Lock()

        def attempt(request_id):
            barrier.wait()
            try:
                marketplace.respond_to_exchange(request_id, self.owner["id"], "accepted")
                outcome = "ok"
            except NotFoundError:
                outcome = "gone"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(r["id"],)) for r in requests]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ["gone", "gone", "gone", "ok"])
        accepted = self.db.query_one("SELECT COUNT(*) AS n FROM exchange_requests WHERE status = 'accepted'")["n"]
        self.assertEqual(accepted, 1)
        self.assertEqual(marketplace.get_listing(self.listing["id"])["status"], "exchanged")

    def test_cannot_offer_on_own_listing(self):
        own_book = self.create_book(self.owner["id"], title="Persuasion")
        with self.assertRaises(ValidationError):
            marketplace.propose_exchange(self.owner["id"], {
                "listing_id": self.listing["id"], "offered_book_id": own_book["id"],
            })

    def test_offered_book_must_belong_to_requester(self):
        stranger_book = self.create_book(self.owner["id"], title="Persuasion")
        with self.assertRaises(NotFoundError):
            marketplace.propose_exchange(self.requester["id"], {
                "listing_id": self.listing["id"], "offered_book_id": stranger_book["id"],
            })

    def test_sent_and_received_views(self):
        self._propose()
        received = marketplace.list_received_exchanges(self.owner["id"])
        sent = marketplace.list_sent_exchanges(self.requester["id"])
        self.assertEqual(received[0]["requester_name"], "requester")
        self.assertEqual(received[0]["offered_book_title"], "Emma")
        self.assertEqual(sent[0]["owner_name"], "owner")
