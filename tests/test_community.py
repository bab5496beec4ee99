import clubs
import social
from error_handling import ForbiddenError, NotFoundError, ValidationError
from support import ApiTestCase, DatabaseTestCase


class SocialTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.create_user("alice")
        self.bob = self.create_user("bob")

    def test_profile_upsert_and_view(self):
        profile = social.update_profile(self.alice["id"], {
            "bio": "Reads on trains", "favorite_genres": ["Mystery", " Poetry "], "reading_goal": "24",
        })
        self.assertEqual(profile["favorite_genres"], ["Mystery", "Poetry"])
        self.assertEqual(profile["reading_goal"], 24)

        social.update_profile(self.alice["id"], {"bio": "Reads everywhere", "favorite_genres": "Horror"})
        self.create_book(self.alice["id"])
        view = social.get_profile("alice")
        self.assertEqual(view["user"]["bio"], "Reads everywhere")
        self.assertEqual(view["user"]["favorite_genres"], ["Horror"])
        self.assertEqual(len(view["books"]), 1)
        self.assertEqual(view["activeListings"], 0)

        with self.assertRaises(NotFoundError):
            social.get_profile("nobody")

    def test_follow_is_idempotent(self):
        self.assertTrue(social.follow_user(self.alice["id"], self.bob["id"]))
        self.assertFalse(social.follow_user(self.alice["id"], self.bob["id"]))
        self.assertTrue(social.is_following(self.alice["id"], self.bob["id"]))
        self.assertEqual([u["username"] for u in social.list_followers(self.bob["id"])], ["alice"])
        self.assertEqual([u["username"] for u in social.list_following(self.alice["id"])], ["bob"])
        follows = [a for a in social.get_user_activity(self.alice["id"]) if a["activity_type"] == "follow"]
        self.assertEqual(len(follows), 1)
        self.assertEqual(follows[0]["activity_data"], {"followed_user_id": self.bob["id"]})

        self.assertTrue(social.unfollow_user(self.alice["id"], self.bob["id"]))
        self.assertFalse(social.is_following(self.alice["id"], self.bob["id"]))

    def test_follow_rules(self):
        with self.assertRaises(ValidationError):
            social.follow_user(self.alice["id"], self.alice["id"])
        with self.assertRaises(NotFoundError):
            social.follow_user(self.alice["id"], 9999)

    def test_feed_includes_followed_public_activity(self):
        social.create_activity(self.bob["id"], {"activity_type": "review", "activity_data": {"stars": 5}})
        social.create_activity(self.bob["id"], {"activity_type": "secret", "is_public": False})
        self.assertEqual(social.get_feed(self.alice["id"]), [])

        social.follow_user(self.alice["id"], self.bob["id"])
        types = [a["activity_type"] for a in social.get_feed(self.alice["id"])]
        self.assertIn("review", types)
        self.assertIn("follow", types)
        self.assertNotIn("secret", types)

        with self.assertRaises(ValidationError):
            social.create_activity(self.alice["id"], {})

    def test_messages(self):
        sent = social.send_message(self.alice["id"], {"recipient_id": self.bob["id"], "message": "Hi Bob"})
        social.send_message(self.bob["id"], {"recipient_id": self.alice["id"], "message": "Hi Alice"})
        social.send_message(self.alice["id"], {"recipient_id": self.bob["id"], "message": "Still have Dune?"})

        self.assertEqual(social.unread_count(self.bob["id"]), 2)
        conversations = social.list_conversations(self.bob["id"])
        self.assertEqual(len(conversations), 1)
        self.assertEqual(conversations[0]["message"], "Still have Dune?")
        self.assertEqual(conversations[0]["other_username"], "alice")

        thread = social.get_conversation(self.bob["id"], self.alice["id"])
        self.assertEqual([m["message"] for m in thread], ["Hi Bob", "Hi Alice", "Still have Dune?"])
        self.assertEqual(social.unread_count(self.bob["id"]), 0)

        with self.assertRaises(NotFoundError):
            social.mark_read(sent["id"], self.alice["id"])
        carol = self.create_user("carol")
        with self.assertRaises(NotFoundError):
            social.delete_message(sent["id"], carol["id"])
        social.delete_message(sent["id"], self.bob["id"])

    def test_message_validation(self):
        with self.assertRaises(ValidationError):
            social.send_message(self.alice["id"], {"recipient_id": self.bob["id"]})
        with self.assertRaises(NotFoundError):
            social.send_message(self.alice["id"], {"recipient_id": 9999, "message": "hello?"})
        with self.assertRaises(NotFoundError) as ctx:
            social.send_message(self.alice["id"], {
                "recipient_id": self.bob["id"], "message": "hi", "listing_id": 9999,
            })
        self.assertEqual(ctx.exception.message, "Listing not found")
        self.assertEqual(social.list_conversations(self.bob["id"]), [])


class ClubsAndForumsTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.create_user("admin")
        self.member = self.create_user("member")
        self.club = clubs.create_club(self.admin["id"], {"name": "Sci-Fi Circle", "description": "Space!"})

    def test_create_club_makes_creator_admin(self):
        self.assertEqual(self.club["member_count"], 1)
        detail = clubs.get_club(self.club["id"])
        self.assertEqual(detail["members"][0]["role"], "admin")
        self.assertIsNone(detail["currentBook"])
        with self.assertRaises(ValidationError):
            clubs.create_club(self.admin["id"], {"name": "  "})

    def test_join_and_leave(self):
        self.assertTrue(clubs.join_club(self.club["id"], self.member["id"]))
        self.assertFalse(clubs.join_club(self.club["id"], self.member["id"]))
        self.assertEqual(clubs.get_club(self.club["id"])["club"]["member_count"], 2)
        self.assertEqual([c["name"] for c in clubs.list_user_clubs(self.member["id"])], ["Sci-Fi Circle"])

        self.assertTrue(clubs.leave_club(self.club["id"], self.member["id"]))
        self.assertEqual(clubs.get_club(self.club["id"])["club"]["member_count"], 1)
        with self.assertRaises(NotFoundError):
            clubs.join_club(9999, self.member["id"])

    def test_private_clubs_are_not_listed(self):
        clubs.create_club(self.admin["id"], {"name": "Hidden", "is_private": True})
        self.assertEqual([c["name"] for c in clubs.list_public_clubs()], ["Sci-Fi Circle"])

    def test_only_managers_set_current_book(self):
        book = self.create_book(self.admin["id"])
        clubs.join_club(self.club["id"], self.member["id"])
        with self.assertRaises(ForbiddenError):
            clubs.set_current_book(self.club["id"], self.member["id"], {"book_id": book["id"]})

        clubs.set_current_book(self.club["id"], self.admin["id"], {"book_id": book["id"]})
        second = self.create_book(self.admin["id"], title="Hyperion")
        entry = clubs.set_current_book(self.club["id"], self.admin["id"], {"book_id": second["id"]})
        self.assertTrue(entry["is_current"])
        self.assertEqual(clubs.get_club(self.club["id"])["currentBook"]["title"], "Hyperion")

    def test_forum_lifecycle(self):
        forum = clubs.create_forum(self.admin["id"], {
            "title": "Is Dune overrated?", "description": "Discuss", "club_id": self.club["id"],
        })
        reply = clubs.add_reply(forum["id"], self.member["id"], {"content": "No."})
        nested = clubs.add_reply(forum["id"], self.admin["id"], {"content": "Agreed", "parent_reply_id": reply["id"]})
        self.assertEqual(nested["parent_reply_id"], reply["id"])
        self.assertEqual(clubs.like_reply(reply["id"]), 1)

        detail = clubs.get_forum(forum["id"])
        self.assertEqual(detail["forum"]["view_count"], 1)
        self.assertEqual(detail["forum"]["reply_count"], 2)
        self.assertEqual(detail["forum"]["club_name"], "Sci-Fi Circle")
        self.assertEqual([r["content"] for r in detail["replies"]], ["No.", "Agreed"])
        self.assertEqual(len(clubs.list_forums(club_id=str(self.club["id"]))), 1)

        with self.assertRaises(NotFoundError):
            clubs.delete_reply(reply["id"], self.admin["id"])
        clubs.delete_reply(reply["id"], self.member["id"])
        detail = clubs.get_forum(forum["id"])
        self.assertEqual(detail["forum"]["reply_count"], 0)
        self.assertEqual(detail["replies"], [])

        with self.assertRaises(NotFoundError):
            clubs.delete_forum(forum["id"], self.member["id"])
        clubs.delete_forum(forum["id"], self.admin["id"])
        with self.assertRaises(NotFoundError):
            clubs.get_forum(forum["id"])

    def test_forum_validation(self):
        with self.assertRaises(ValidationError):
            clubs.create_forum(self.admin["id"], {"title": "No description"})
        with self.assertRaises(NotFoundError):
            clubs.create_forum(self.admin["id"], {"title": "T", "description": "D", "book_id": 9999})
        forum = clubs.create_forum(self.admin["id"], {"title": "T", "description": "D"})
        other = clubs.create_forum(self.admin["id"], {"title": "T2", "description": "D2"})
        reply = clubs.add_reply(other["id"], self.admin["id"], {"content": "elsewhere"})
        with self.assertRaises(ValidationError):
            clubs.add_reply(forum["id"], self.admin["id"], {"content": "x", "parent_reply_id": reply["id"]})
        with self.assertRaises(ValidationError):
            clubs.add_reply(forum["id"], self.admin["id"], {"content": "  "})
        with self.assertRaises(NotFoundError):
            clubs.like_reply(9999)


class CommunityApiTestCase(ApiTestCase):
    def test_social_routes(self):
        alice, alice_token = self.register("alice")
        bob, bob_token = self.register("bob")

        response = self.client.post(f"/api/profiles/follow/{bob['id']}", headers=self.auth(alice_token))
        self.assertEqual(response.status_code, 200)
        check = self.client.get(f"/api/profiles/follow/check/{bob['id']}", headers=self.auth(alice_token))
        self.assertEqual(check.get_json(), {"isFollowing": True})

        profile = self.client.get("/api/profiles/bob").get_json()
        self.assertEqual(profile["followers"], 1)

        response = self.client.post("/api/messages/send", json={"recipient_id": bob["id"], "message": "Hi"},
                                    headers=self.auth(alice_token))
        self.assertEqual(response.status_code, 201)
        message_id = response.get_json()["data"]["id"]
        unread = self.client.get("/api/messages/unread-count", headers=self.auth(bob_token)).get_json()
        self.assertEqual(unread, {"count": 1})
        response = self.client.put(f"/api/messages/{message_id}/read", headers=self.auth(bob_token))
        self.assertEqual(response.status_code, 200)
        response = self.client.delete(f"/api/messages/{message_id}", headers=self.auth(bob_token))
        self.assertEqual(response.status_code, 200)

        feed = self.client.get("/api/activity", headers=self.auth(alice_token)).get_json()
        self.assertEqual(feed[0]["activity_type"], "follow")

    def test_club_and_forum_routes(self):
        _, admin_token = self.register("admin")
        _, member_token = self.register("member")

        response = self.client.post("/api/book-clubs", json={"name": "Classics"}, headers=self.auth(admin_token))
        self.assertEqual(response.status_code, 201)
        club_id = response.get_json()["club"]["id"]

        self.assertEqual(self.client.post(f"/api/book-clubs/{club_id}/join",
                                          headers=self.auth(member_token)).status_code, 200)
        book = self.client.post("/api/books", json={"title": "Emma", "author": "Jane Austen", "price": 5},
                                headers=self.auth(admin_token)).get_json()
        response = self.client.post(f"/api/book-clubs/{club_id}/current-book", json={"book_id": book["id"]},
                                    headers=self.auth(member_token))
        self.assertEqual(response.status_code, 403)

        response = self.client.post("/api/forums", json={"title": "Emma", "description": "Chapter 1",
                                                         "club_id": club_id}, headers=self.auth(admin_token))
        self.assertEqual(response.status_code, 201)
        forum_id = response.get_json()["forum"]["id"]
        response = self.client.post(f"/api/forums/{forum_id}/reply", json={"content": "Loved it"},
                                    headers=self.auth(member_token))
        self.assertEqual(response.status_code, 201)
        response = self.client.delete(f"/api/forums/{forum_id}", headers=self.auth(member_token))
        self.assertEqual(response.status_code, 404)
        detail = self.client.get(f"/api/forums/{forum_id}").get_json()
        self.assertEqual(detail["forum"]["reply_count"], 1)

    def test_non_string_text_fields(self):
        _, token = self.register("admin")
        response = self.client.post("/api/book-clubs", json={"name": 123}, headers=self.auth(token))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["club"]["name"], "123")

        response = self.client.post("/api/forums", json={"title": 1984, "description": ["x"]},
                                    headers=self.auth(token))
        self.assertEqual(response.status_code, 201)
        forum_id = response.get_json()["forum"]["id"]
        response = self.client.post(f"/api/forums/{forum_id}/reply", json={"content": 42}, headers=self.auth(token))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["reply"]["content"], "42")
