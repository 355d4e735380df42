from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse

from ...hubs import notifying
from ...hubs.models import Subscription
from ...hubs.protocol import sign
from .. import views
from ..atom import parse
from ..models import Update
from .factories import FeedFactory, PersonFactory, UpdateFactory, local_person


ATOM_BODY = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <id>https://remote.example.com/feed.atom</id>
    <title>Remote updates</title>
    <author><name>Carol</name></author>
    <entry>
        <id>tag:remote.example.com,2024:1</id>
        <content type="text">First</content>
        <published>2024-01-01T10:00:00Z</published>
    </entry>
    <entry>
        <id>tag:remote.example.com,2024:2</id>
        <content type="text">Second</content>
        <published>2024-01-02T10:00:00Z</published>
    </entry>
</feed>
"""


class TestFeedGet(TestCase):
    def test_returns_atom_document(self):
        feed = FeedFactory()
        UpdateFactory.create_batch(2, feed=feed)

        response = self.client.get(f"/feeds/{feed.pk}.atom")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/atom+xml; charset=UTF-8")
        self.assertEqual(len(parse(response.content)), 2)

    def test_404_for_unknown_feed(self):
        response = self.client.get("/feeds/9999.atom")

        self.assertEqual(response.status_code, 404)


class TestVerificationChallenge(TestCase):
    def setUp(self):
        self.follower = local_person()
        self.feed = FeedFactory(url="https://remote.example.com/feed.atom")
        self.subscription = Subscription.objects.create(
            follower=self.follower,
            callback=self.feed,
            topic=self.feed.url,
            hub="https://hub.example.net/",
            verify_token="*TOKEN*",
        )

    def test_echoes_challenge_when_token_and_topic_match(self):
        response = self.client.get(
            reverse("feeds:feed", kwargs={"pk": self.feed.pk}),
            {
                "hub.mode": "subscribe",
                "hub.topic": self.feed.url,
                "hub.challenge": "*CHALLENGE*",
                "hub.verify_token": "*TOKEN*",
                "hub.lease_seconds": "86400",
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"*CHALLENGE*")
        self.assertTrue(response["Content-Type"].startswith("text/plain"))
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.state, Subscription.VERIFIED)
        self.assertTrue(self.subscription.lease_expires)

    def test_404_when_token_wrong(self):
        response = self.client.get(
            reverse("feeds:feed", kwargs={"pk": self.feed.pk}),
            {
                "hub.mode": "subscribe",
                "hub.topic": self.feed.url,
                "hub.challenge": "*CHALLENGE*",
                "hub.verify_token": "*WRONG*",
            },
        )

        self.assertEqual(response.status_code, 404)
        self.assertNotIn(b"*CHALLENGE*", response.content)

    def test_404_when_topic_wrong(self):
        response = self.client.get(
            reverse("feeds:feed", kwargs={"pk": self.feed.pk}),
            {
                "hub.topic": "https://remote.example.com/other.atom",
                "hub.challenge": "*CHALLENGE*",
                "hub.verify_token": "*TOKEN*",
            },
        )

        self.assertEqual(response.status_code, 404)
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.state, Subscription.FAILED)

    def test_404_when_feed_unknown(self):
        response = self.client.get(
            "/feeds/9999.atom",
            {
                "hub.topic": self.feed.url,
                "hub.challenge": "*CHALLENGE*",
                "hub.verify_token": "*TOKEN*",
            },
        )

        self.assertEqual(response.status_code, 404)


class TestFeedPush(TestCase):
    def setUp(self):
        self.feed = FeedFactory(url="https://remote.example.com/feed.atom", secret="*SECRET*")
        self.url = reverse("feeds:feed", kwargs={"pk": self.feed.pk})

    def post(self, body, signature):
        headers = {"X-Hub-Signature": signature} if signature else {}
        return self.client.post(
            self.url, body, content_type="application/atom+xml", headers=headers
        )

    def test_accepts_signed_entries(self):
        response = self.post(ATOM_BODY, sign("*SECRET*", ATOM_BODY))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"accepted 2, rejected 0\n")
        self.assertEqual(
            sorted(self.feed.updates.values_list("text", flat=True)), ["First", "Second"]
        )

    def test_redelivery_is_rejected_without_duplicates(self):
        self.post(ATOM_BODY, sign("*SECRET*", ATOM_BODY, "sha256"))

        response = self.post(ATOM_BODY, sign("*SECRET*", ATOM_BODY, "sha256"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"accepted 0, rejected 2\n")
        self.assertEqual(self.feed.updates.count(), 2)

    def test_403_when_signature_wrong(self):
        response = self.post(ATOM_BODY, sign("*WRONG*", ATOM_BODY))

        self.assertEqual(response.status_code, 403)
        self.assertFalse(self.feed.updates.exists())

    def test_403_when_signature_missing(self):
        response = self.post(ATOM_BODY, None)

        self.assertEqual(response.status_code, 403)
        self.assertFalse(self.feed.updates.exists())

    def test_400_when_body_malformed(self):
        body = b"<feed xmlns='http://www.w3.org/2005/Atom'><entry>"

        response = self.post(body, sign("*SECRET*", body))

        self.assertEqual(response.status_code, 400)
        self.assertFalse(self.feed.updates.exists())

    def test_404_when_feed_unknown(self):
        self.url = "/feeds/9999.atom"

        response = self.post(ATOM_BODY, sign("*SECRET*", ATOM_BODY))

        self.assertEqual(response.status_code, 404)


class TestUserFeed(TestCase):
    def test_redirects_to_feed(self):
        person = local_person(username="alice")

        response = self.client.get("/users/alice/feed")

        self.assertRedirects(
            response, person.feed.get_absolute_url(), fetch_redirect_response=False
        )

    def test_404_for_unknown_person(self):
        response = self.client.get("/users/nobody/feed")

        self.assertEqual(response.status_code, 404)


class TestUpdateCreate(TestCase):
    def setUp(self):
        self.person = local_person()
        self.client.force_login(self.person.login)

    def test_publishes_update_and_pings_hubs(self):
        with (
            self.settings(HUBS_SEND_REQUESTS=True, HUBS_USE_QUEUE=False),
            patch.object(notifying, "notify_hubs") as notify_hubs,
            self.captureOnCommitCallbacks(execute=True),
        ):
            response = self.client.post(reverse("feeds:update-create"), {"text": "Hello"})

        self.assertRedirects(
            response, self.person.feed.get_absolute_url(), fetch_redirect_response=False
        )
        update = Update.objects.get(feed=self.person.feed)
        self.assertEqual(update.text, "Hello")
        self.assertEqual(update.author, self.person)
        notify_hubs.assert_called_once_with(self.person.feed)

    def test_redirects_to_next_if_safe(self):
        response = self.client.post(
            reverse("feeds:update-create"), {"text": "Hello", "next": "/somewhere"}
        )

        self.assertRedirects(response, "/somewhere", fetch_redirect_response=False)

    def test_ignores_next_on_other_site(self):
        response = self.client.post(
            reverse("feeds:update-create"),
            {"text": "Hello", "next": "https://evil.example.com/"},
        )

        self.assertRedirects(
            response, self.person.feed.get_absolute_url(), fetch_redirect_response=False
        )

    def test_does_not_create_blank_update(self):
        self.client.post(reverse("feeds:update-create"), {"text": ""})

        self.assertFalse(Update.objects.exists())

    def test_requires_login(self):
        self.client.logout()

        response = self.client.post(reverse("feeds:update-create"), {"text": "Hello"})

        self.assertEqual(response.status_code, 302)
        self.assertFalse(Update.objects.exists())


class TestUpdateDelete(TestCase):
    def setUp(self):
        self.person = local_person()
        self.update = self.person.feed.publish(self.person, "Oops")

    def test_author_can_delete(self):
        self.client.force_login(self.person.login)

        response = self.client.post(
            reverse("feeds:update-delete", kwargs={"pk": self.update.pk})
        )

        self.assertEqual(response.status_code, 302)
        self.assertFalse(Update.objects.filter(pk=self.update.pk).exists())

    def test_others_cannot_delete(self):
        other = local_person()
        self.client.force_login(other.login)

        response = self.client.post(
            reverse("feeds:update-delete", kwargs={"pk": self.update.pk})
        )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(Update.objects.filter(pk=self.update.pk).exists())


class TestHashtag(TestCase):
    def test_lists_tagged_updates_newest_first(self):
        now = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
        older = UpdateFactory(text="#birds at dawn", published=now - timedelta(hours=1))
        newer = UpdateFactory(text="More #Birds", published=now)
        UpdateFactory(text="#birdsong", published=now)

        response = self.client.get(reverse("feeds:hashtag", kwargs={"tag": "birds"}))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["hashtag"], "birds")
        self.assertEqual([item["text"] for item in data["items"]], [newer.text, older.text])
        self.assertEqual(data["items"][0]["feed"], newer.feed.url)
        self.assertEqual(data["items"][0]["author"], newer.author.native_name)
        self.assertEqual(data["items"][0]["published"], "2024-05-06T07:08:09Z")

    def test_empty_when_nothing_tagged(self):
        response = self.client.get("/hashtags/nothing")

        self.assertEqual(response.json()["items"], [])

    def test_pages(self):
        page_size = views.JsonListView.paginate_by
        UpdateFactory.create_batch(page_size + 2, text="#many")

        first = self.client.get("/hashtags/many").json()
        second = self.client.get("/hashtags/many", {"page": 2}).json()

        self.assertEqual((first["page"], first["pages"], len(first["items"])), (1, 2, page_size))
        self.assertEqual((second["page"], len(second["items"])), (2, 2))


class TestFollowerLists(TestCase):
    def setUp(self):
        self.alice = local_person(username="alice", first_name="Alice", last_name="")
        self.bob = local_person(username="bob", first_name="Bob", last_name="")
        self.carol_feed = FeedFactory(author=PersonFactory(native_name="Carol"))
        self.bob.following.add(self.alice.feed, self.carol_feed)

    def test_followers(self):
        response = self.client.get(reverse("feeds:followers", kwargs={"slug": "alice"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["items"], [{"name": "Bob", "slug": "bob", "url": ""}]
        )

    def test_following(self):
        response = self.client.get(reverse("feeds:following", kwargs={"slug": "bob"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [item["name"] for item in response.json()["items"]], ["Alice", "Carol"]
        )

    def test_404_for_unknown_person(self):
        self.assertEqual(self.client.get("/users/nobody/followers").status_code, 404)
        self.assertEqual(self.client.get("/users/nobody/following").status_code, 404)
