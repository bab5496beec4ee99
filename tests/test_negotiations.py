import marketplace
import negotiations
from error_handling import NotFoundError, ValidationError
from support import DatabaseTestCase


class NegotiationTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.create_user("seller")
        self.buyer = self.create_user("buyer")
        book = self.create_book(self.seller["id"])
        self.listing = marketplace.create_listing(self.seller["id"], {
            "book_id": book["id"], "listing_type": "sell", "price": 20, "condition": "good",
        })

    def _offer(self, price=15):
        return negotiations.make_offer(self.buyer["id"], {
            "listing_id": self.listing["id"], "offered_price": price, "message": "Would you take less?",
        })

    def test_offer_snapshots_listing_price(self):
        offer = self._offer()
        self.assertEqual(offer["status"], "pending")
        self.assertEqual(offer["original_price"], 20.0)
        self.assertEqual(offer["offered_price"], 15.0)
        self.assertEqual(offer["seller_id"], self.seller["id"])

    def test_accept_reprices_listing_and_keeps_it_active(self):
        offer = self._offer()
        accepted = negotiations.accept_offer(offer["id"], self.seller["id"])
        self.assertEqual(accepted["status"], "accepted")
        listing = marketplace.get_listing(self.listing["id"])
        self.assertEqual(listing["price"], 15.0)
        self.assertEqual(listing["status"], "active")

    def test_accept_after_counter_uses_offered_price(self):
        offer = self._offer()
        countered = negotiations.counter_offer(offer["id"], self.seller["id"], {"counter_price": 18})
        self.assertEqual(countered["status"], "countered")
        self.assertEqual(countered["counter_price"], 18.0)
        self.assertEqual(countered["message"], "Would you take less?")

        negotiations.accept_offer(offer["id"], self.seller["id"])
        self.assertEqual(marketplace.get_listing(self.listing["id"])["price"], 15.0)

    def test_counter_requires_price(self):
        offer = self._offer()
        with self.assertRaises(ValidationError) as ctx:
            negotiations.counter_offer(offer["id"], self.seller["id"], {})
        self.assertEqual(ctx.exception.message, "Counter price is required")

    def test_cannot_negotiate_on_own_listing(self):
        with self.assertRaises(ValidationError) as ctx:
            negotiations.make_offer(self.seller["id"], {"listing_id": self.listing["id"], "offered_price": 10})
        self.assertEqual(ctx.exception.message, "Cannot negotiate on your own listing")

    def test_offer_requires_positive_price(self):
        with self.assertRaises(ValidationError):
            self._offer(price=0)

    def test_exchange_listing_cannot_be_negotiated(self):
        book = self.create_book(self.seller["id"], title="Emma")
        listing = marketplace.create_listing(self.seller["id"], {
            "book_id": book["id"], "listing_type": "exchange", "condition": "good",
        })
        with self.assertRaises(NotFoundError):
            negotiations.make_offer(self.buyer["id"], {"listing_id": listing["id"], "offered_price": 5})

    def test_only_seller_may_answer(self):
        offer = self._offer()
        for action in (negotiations.accept_offer, negotiations.reject_offer):
            with self.assertRaises(NotFoundError):
                action(offer["id"], self.buyer["id"])

    def test_closed_negotiation_cannot_change(self):
        offer = self._offer()
        negotiations.reject_offer(offer["id"], self.seller["id"])
        with self.assertRaises(ValidationError) as ctx:
            negotiations.accept_offer(offer["id"], self.seller["id"])
        self.assertEqual(ctx.exception.message, "Negotiation is already rejected")
        self.assertEqual(marketplace.get_listing(self.listing["id"])["price"], 20.0)

    def test_accept_on_sold_listing_fails(self):
        offer = self._offer()
        third = self.create_user("third")
        marketplace.purchase_listing(third["id"], {"listing_id": self.listing["id"]})
        with self.assertRaises(NotFoundError):
            negotiations.accept_offer(offer["id"], self.seller["id"])
        reloaded = negotiations.list_sent(self.buyer["id"])[0]
        self.assertEqual(reloaded["status"], "pending")
        self.assertEqual(reloaded["listing_status"], "sold")

    def test_listing_views(self):
        self._offer()
        self.assertEqual(len(negotiations.list_for_listing(self.listing["id"], self.seller["id"])), 1)
        self.assertEqual(negotiations.list_for_listing(self.listing["id"], self.buyer["id"]), [])
        received = negotiations.list_received(self.seller["id"])
        self.assertEqual(received[0]["buyer_name"], "buyer")
        self.assertEqual(received[0]["current_price"], 20.0)
