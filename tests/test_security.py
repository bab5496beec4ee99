import unittest

from error_handling import (
    ForbiddenError,
    NotFoundError,
    ValidationError,
    parse_int,
    parse_price,
    require_fields,
    validate_choice,
)
from security import AuthorizationPolicy, SecurityConfig


class AuthorizationPolicyTestCase(unittest.TestCase):
    def test_owned_resources_are_masked(self):
        for resource in ("book", "listing", "negotiation", "forum", "forum_reply", "message"):
            self.assertTrue(AuthorizationPolicy.mask_not_found(resource))
            error = AuthorizationPolicy.deny(resource)
            self.assertIsInstance(error, NotFoundError)
            self.assertEqual(error.status_code, 404)

    def test_shared_resources_are_forbidden(self):
        error = AuthorizationPolicy.deny("exchange_request")
        self.assertIsInstance(error, ForbiddenError)
        self.assertEqual(error.message, "Not authorized to respond to this request")
        self.assertIsInstance(AuthorizationPolicy.deny("book_club", "Nope"), ForbiddenError)

    def test_default_and_custom_messages(self):
        self.assertEqual(AuthorizationPolicy.deny("listing").message, "Listing not found or does not belong to you")
        self.assertEqual(AuthorizationPolicy.deny("message", "Message not found").message, "Message not found")

    def test_unknown_resource_raises(self):
        with self.assertRaises(KeyError):
            AuthorizationPolicy.mask_not_found("spaceship")


class PasswordPolicyTestCase(unittest.TestCase):
    def test_validate_password(self):
        self.assertEqual(SecurityConfig.validate_password("ValidPass1"), (True, None))
        self.assertFalse(SecurityConfig.validate_password("")[0])
        self.assertFalse(SecurityConfig.validate_password("Short1")[0])
        self.assertFalse(SecurityConfig.validate_password("alllowercase1")[0])
        self.assertFalse(SecurityConfig.validate_password("NoNumbersHere")[0])

    def test_hash_and_verify(self):
        hashed = SecurityConfig.hash_password("ValidPass1")
        self.assertNotEqual(hashed, "ValidPass1")
        self.assertTrue(SecurityConfig.verify_password(hashed, "ValidPass1"))
        self.assertFalse(SecurityConfig.verify_password(hashed, "validpass1"))

    def test_validate_username_and_email(self):
        self.assertTrue(SecurityConfig.validate_username("book_worm-7")[0])
        self.assertFalse(SecurityConfig.validate_username("ab")[0])
        self.assertFalse(SecurityConfig.validate_username("has space")[0])
        self.assertTrue(SecurityConfig.validate_email("reader@example.com")[0])
        self.assertFalse(SecurityConfig.validate_email("reader@")[0])


class InputCoercionTestCase(unittest.TestCase):
    def test_parse_price(self):
        self.assertEqual(parse_price("12.345"), 12.35)
        self.assertEqual(parse_price(20), 20.0)
        self.assertIsNone(parse_price(None, required=False))
        for bad in ("0", -1, "abc", "NaN", "Infinity", True):
            with self.assertRaises(ValidationError):
                parse_price(bad)
        with self.assertRaises(ValidationError) as ctx:
            parse_price("", "Price")
        self.assertEqual(ctx.exception.message, "Price is required")

    def test_parse_int(self):
        self.assertEqual(parse_int("7", "book_id"), 7)
        self.assertIsNone(parse_int(None, "book_id", required=False))
        with self.assertRaises(ValidationError):
            parse_int("seven", "book_id")
        with self.assertRaises(ValidationError):
            parse_int("-1", "pages", minimum=0)

    def test_require_fields(self):
        require_fields({"a": 1, "b": "x"}, ("a", "b"))
        with self.assertRaises(ValidationError) as ctx:
            require_fields({"a": " "}, ("a", "b"))
        self.assertEqual(ctx.exception.message, "Missing required fields: a, b")

    def test_validate_choice(self):
        self.assertEqual(validate_choice("sell", {"sell", "exchange"}, "listing_type"), "sell")
        for bad in (["sell"], {"a": 1}, 1, None, "auction"):
            with self.assertRaises(ValidationError):
                validate_choice(bad, {"sell", "exchange"}, "listing_type")
        with self.assertRaises(ValidationError) as ctx:
            validate_choice(["accepted"], {"accepted", "rejected"}, "status",
                            "Status must be 'accepted' or 'rejected'")
        self.assertEqual(ctx.exception.message, "Status must be 'accepted' or 'rejected'")


if __name__ == "__main__":
    unittest.main()
