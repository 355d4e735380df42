"""Tests for the hubs app."""

from datetime import datetime, timedelta, timezone as dt_timezone
import socketserver
import threading
import time
from unittest.mock import patch
from urllib.parse import parse_qs

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
import requests
import responses
from responses import matchers

from ..feeds.atom import MalformedDocument
from ..feeds.models import Feed, Person, Update
from ..feeds.tests.factories import FeedFactory, PersonFactory, UpdateFactory, local_person
from . import models, notifying, receiving, tasks
from .models import Subscription
from .notifying import notify_hubs
from .protocol import handle_challenge, sign, signature_matches
from .receiving import InvalidSignature, UnknownFeed, ingest


REMOTE_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <id>https://remote.example.com/feed.atom</id>
    <title>Remote updates</title>
    <author>
        <name>Carol</name>
        <uri>https://remote.example.com/carol</uri>
    </author>
    <link rel="self" href="https://remote.example.com/feed.atom"/>
    <link rel="hub" href="https://hub.example.net/"/>
    <entry>
        <id>tag:remote.example.com,2024:1</id>
        <content type="text">First</content>
        <published>2024-01-01T10:00:00Z</published>
    </entry>
    <entry>
        <id>tag:remote.example.com,2024:2</id>
        <content type="text">Second</content>
        <published>2024-01-02T10:00:00Z</published>
        <author><name>Dave</name></author>
    </entry>
</feed>
"""


class TestHandleChallenge(TestCase):
    def test_echoes_challenge_when_all_match(self):
        result = handle_challenge(
            "https://chirrup.example/feeds/1.atom",
            "https://remote.example.com/feed.atom",
            "*CHALLENGE*",
            "*TOKEN*",
            "https://remote.example.com/feed.atom",
            "*TOKEN*",
        )

        self.assertEqual(result.status, 200)
        self.assertEqual(result.body, "*CHALLENGE*")
        self.assertTrue(result.verified)

    def test_refuses_wrong_token(self):
        result = handle_challenge(
            "https://chirrup.example/feeds/1.atom",
            "https://remote.example.com/feed.atom",
            "*CHALLENGE*",
            "*WRONG*",
            "https://remote.example.com/feed.atom",
            "*TOKEN*",
        )

        self.assertEqual(result.status, 404)
        self.assertEqual(result.body, "")
        self.assertFalse(result.verified)

    def test_refuses_wrong_topic(self):
        result = handle_challenge(
            "https://chirrup.example/feeds/1.atom",
            "https://remote.example.com/other.atom",
            "*CHALLENGE*",
            "*TOKEN*",
            "https://remote.example.com/feed.atom",
            "*TOKEN*",
        )

        self.assertEqual(result.status, 404)

    def test_refuses_when_no_feed(self):
        result = handle_challenge(
            "https://chirrup.example/feeds/1.atom",
            "https://remote.example.com/feed.atom",
            "*CHALLENGE*",
            "*TOKEN*",
            None,
            "*TOKEN*",
        )

        self.assertEqual(result.status, 404)

    def test_refuses_when_no_token_expected(self):
        result = handle_challenge(
            "https://chirrup.example/feeds/1.atom",
            "https://remote.example.com/feed.atom",
            "*CHALLENGE*",
            "",
            "https://remote.example.com/feed.atom",
            None,
        )

        self.assertEqual(result.status, 404)


class TestSignatures(TestCase):
    body = b"<feed/>"

    def test_sha1_signature(self):
        header = sign("*SECRET*", self.body)

        self.assertTrue(header.startswith("sha1="))
        self.assertTrue(signature_matches("*SECRET*", self.body, header))

    def test_other_algorithms(self):
        for algorithm in ["sha256", "sha384", "sha512"]:
            with self.subTest(algorithm=algorithm):
                header = sign("*SECRET*", self.body, algorithm)

                self.assertTrue(signature_matches("*SECRET*", self.body, header))

    def test_ignores_case_of_algorithm_and_digest(self):
        header = sign("*SECRET*", self.body).upper()

        self.assertTrue(signature_matches("*SECRET*", self.body, header))

    def test_rejects_tampered_body(self):
        header = sign("*SECRET*", self.body)

        self.assertFalse(signature_matches("*SECRET*", self.body + b" ", header))

    def test_rejects_wrong_secret(self):
        header = sign("*OTHER*", self.body)

        self.assertFalse(signature_matches("*SECRET*", self.body, header))

    def test_rejects_missing_header_or_secret(self):
        self.assertFalse(signature_matches("*SECRET*", self.body, None))
        self.assertFalse(signature_matches("", self.body, sign("", self.body)))

    def test_rejects_unknown_algorithm_or_garbage(self):
        self.assertFalse(signature_matches("*SECRET*", self.body, "md5=0123456789abcdef"))
        self.assertFalse(signature_matches("*SECRET*", self.body, "garbage"))


class TestIngest(TestCase):
    def setUp(self):
        self.feed = FeedFactory(
            url="https://remote.example.com/feed.atom",
            secret="*SECRET*",
            author=PersonFactory(native_name="Carol"),
        )

    def test_accepts_new_entries_then_rejects_them(self):
        signature = sign("*SECRET*", REMOTE_FEED)

        first = ingest(self.feed.pk, REMOTE_FEED, "https://chirrup.example/feeds/1.atom", signature)
        second = ingest(self.feed.pk, REMOTE_FEED, "https://chirrup.example/feeds/1.atom", signature)

        self.assertEqual((first.accepted, first.rejected), (2, 0))
        self.assertEqual((second.accepted, second.rejected), (0, 2))
        self.assertEqual(self.feed.updates.count(), 2)

    def test_updates_remember_entry_details(self):
        ingest(self.feed.pk, REMOTE_FEED, "/", sign("*SECRET*", REMOTE_FEED))

        first = self.feed.updates.get(entry_id="tag:remote.example.com,2024:1")
        self.assertEqual(first.text, "First")
        self.assertEqual(first.author, self.feed.author)
        self.assertEqual(first.published, datetime(2024, 1, 1, 10, tzinfo=dt_timezone.utc))
        second = self.feed.updates.get(entry_id="tag:remote.example.com,2024:2")
        self.assertEqual(second.author.native_name, "Dave")
        self.assertFalse(second.author.is_local)

    def test_duplicate_entries_in_one_push_count_once(self):
        body = b"""<feed xmlns="http://www.w3.org/2005/Atom">
            <entry><id>urn:x:1</id><published>2024-01-01T00:00:00Z</published></entry>
            <entry><id>urn:x:1</id><published>2024-01-01T00:00:00Z</published></entry>
        </feed>"""

        result = ingest(self.feed.pk, body, "/", sign("*SECRET*", body))

        self.assertEqual((result.accepted, result.rejected), (1, 1))

    def test_leaves_updates_alone_when_body_tampered_with(self):
        existing = UpdateFactory(feed=self.feed, entry_id="urn:x:existing")
        signature = sign("*SECRET*", REMOTE_FEED)
        tampered = REMOTE_FEED.replace(b"First", b"Forged")

        with self.assertRaises(InvalidSignature):
            ingest(self.feed.pk, tampered, "/", signature)

        self.assertEqual(list(self.feed.updates.all()), [existing])

    def test_rejects_push_to_feed_without_secret(self):
        feed = FeedFactory(secret="")

        with self.assertRaises(InvalidSignature):
            ingest(feed.pk, REMOTE_FEED, "/", sign("", REMOTE_FEED))

    def test_unknown_feed(self):
        with self.assertRaises(UnknownFeed):
            ingest(9999, REMOTE_FEED, "/", sign("*SECRET*", REMOTE_FEED))

    def test_malformed_document_changes_nothing(self):
        body = REMOTE_FEED.replace(b"<id>tag:remote.example.com,2024:2</id>", b"")

        with self.assertRaises(MalformedDocument):
            ingest(self.feed.pk, body, "/", sign("*SECRET*", body))

        self.assertFalse(self.feed.updates.exists())

    def test_entry_stored_meanwhile_counts_as_rejected(self):
        def author_and_rival_update(feed, entry):
            UpdateFactory(feed=feed, entry_id=entry.entry_id, text="rival")
            return feed.author

        with patch.object(receiving, "author_of_entry", side_effect=author_and_rival_update):
            result = ingest(self.feed.pk, REMOTE_FEED, "/", sign("*SECRET*", REMOTE_FEED))

        self.assertEqual((result.accepted, result.rejected), (0, 2))
        self.assertEqual(
            list(self.feed.updates.values_list("text", flat=True)), ["rival", "rival"]
        )


class TestConcurrentIngest(TransactionTestCase):
    def test_simultaneous_pushes_store_each_entry_once(self):
        feed = FeedFactory(
            url="https://remote.example.com/feed.atom",
            secret="*SECRET*",
            author=PersonFactory(native_name="Carol"),
        )
        signature = sign("*SECRET*", REMOTE_FEED)
        barrier = threading.Barrier(4)
        results = []
        errors = []

        def push():
            try:
                barrier.wait()
                results.append(ingest(feed.pk, REMOTE_FEED, "/", signature))
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=push) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        self.assertEqual(errors, [])
        self.assertEqual(sum(r.accepted for r in results), 2)
        self.assertEqual(sum(r.rejected for r in results), 6)
        self.assertEqual(Update.objects.filter(feed=feed).count(), 2)
        self.assertEqual(Person.objects.filter(native_name="Dave").count(), 1)


class TrickleHandler(socketserver.BaseRequestHandler):
    """Hub that answers one byte at a time, with a pause after each."""

    response = b"HTTP/1.1 202 Accepted\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
    pause = 0.2

    def handle(self):
        self.request.recv(65536)
        for i in range(len(self.response)):
            if self.server.stopping.is_set():
                return
            self.request.sendall(self.response[i : i + 1])
            time.sleep(self.pause)


class PromptHandler(TrickleHandler):
    pause = 0


@override_settings(FEEDS_FETCH_AGENT="Chirrup test")
class TestNotifyHubs(TestCase):
    def start_hub(self, handler_class):
        """Run a hub on localhost until the end of the test, and return its URL."""
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), handler_class)
        server.daemon_threads = True
        server.stopping = threading.Event()
        threading.Thread(target=server.serve_forever, daemon=True).start()
        self.addCleanup(server.server_close)
        self.addCleanup(server.shutdown)
        self.addCleanup(server.stopping.set)
        host, port = server.server_address
        return f"http://{host}:{port}/"

    @responses.activate
    def test_counts_hubs_that_acknowledge(self):
        feed = FeedFactory(hubs=["https://hub1.example.net/", "https://hub2.example.net/"])
        ok = responses.post(
            "https://hub1.example.net/",
            status=204,
            match=[
                matchers.urlencoded_params_matcher({"hub.mode": "publish", "hub.url": feed.url}),
                matchers.header_matcher({"User-Agent": "Chirrup test"}),
            ],
        )
        broken = responses.post("https://hub2.example.net/", status=500)

        with patch.object(notifying, "logger") as logger:
            result = notify_hubs(feed, timeout=0.5)

        self.assertEqual(result, 1)
        self.assertEqual(ok.call_count, 1)
        self.assertEqual(broken.call_count, 1)
        logger.warning.assert_called_once()

    @responses.activate
    def test_connection_failure_counts_as_failure(self):
        feed = FeedFactory(hubs=["https://hub1.example.net/"])
        responses.post(
            "https://hub1.example.net/",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with patch.object(notifying, "logger"):
            result = notify_hubs(feed)

        self.assertEqual(result, 0)

    def test_slow_hub_does_not_hold_up_the_rest(self):
        prompt_url = self.start_hub(PromptHandler)
        slow_url = self.start_hub(TrickleHandler)
        feed = FeedFactory(hubs=[prompt_url, slow_url])

        started = time.monotonic()
        with patch.object(notifying, "logger") as logger:
            result = notify_hubs(feed, timeout=0.5)
        elapsed = time.monotonic() - started

        self.assertEqual(result, 1)
        self.assertLess(elapsed, 1.5)
        logger.warning.assert_called_once()
        self.assertIn(slow_url, logger.warning.call_args.args[0])

    def test_slow_hubs_are_waited_for_together(self):
        feed = FeedFactory(hubs=[self.start_hub(TrickleHandler) for _ in range(3)])

        started = time.monotonic()
        with patch.object(notifying, "logger"):
            result = notify_hubs(feed, timeout=0.5)
        elapsed = time.monotonic() - started

        self.assertEqual(result, 0)
        self.assertLess(elapsed, 1.5)

    @responses.activate
    def test_passes_timeout_to_each_request(self):
        feed = FeedFactory(hubs=["https://hub1.example.net/"])
        responses.post("https://hub1.example.net/", status=204)

        with patch.object(notifying.requests, "post", wraps=requests.post) as post:
            notify_hubs(feed, timeout=0.25)

        self.assertEqual(post.call_args.kwargs["timeout"], 0.25)

    def test_zero_when_no_hubs(self):
        feed = FeedFactory()

        self.assertEqual(notify_hubs(feed), 0)


@override_settings(
    FEEDS_DOMAIN="chirrup.example",
    FEEDS_DOMAIN_INSECURE=False,
    HUBS_SEND_REQUESTS=True,
    HUBS_USE_QUEUE=False,
)
class TestFollow(TestCase):
    def setUp(self):
        self.person = local_person()

    @responses.activate
    def test_follows_remote_feed_and_subscribes_via_its_hub(self):
        responses.get("https://remote.example.com/feed.atom", body=REMOTE_FEED)
        hub = responses.post("https://hub.example.net/", status=202)

        with self.captureOnCommitCallbacks(execute=True):
            feed = Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        self.assertEqual(feed.url, "https://remote.example.com/feed.atom")
        self.assertEqual(feed.author.native_name, "Carol")
        self.assertEqual(feed.author.url, "https://remote.example.com/carol")
        self.assertTrue(feed.secret)
        self.assertEqual(feed.updates.count(), 2)
        self.assertTrue(self.person.is_following(feed.url))

        subscription = Subscription.objects.get(follower=self.person)
        self.assertEqual(subscription.topic, feed.url)
        self.assertEqual(subscription.hub, "https://hub.example.net/")
        self.assertEqual(subscription.state, Subscription.PENDING)
        self.assertTrue(subscription.requested)

        self.assertEqual(hub.call_count, 1)
        params = parse_qs(responses.calls[1].request.body)
        self.assertEqual(
            params,
            {
                "hub.mode": ["subscribe"],
                "hub.callback": [f"https://chirrup.example/feeds/{feed.pk}.atom"],
                "hub.topic": ["https://remote.example.com/feed.atom"],
                "hub.verify": ["async", "sync"],
                "hub.verify_token": [subscription.verify_token],
                "hub.secret": [feed.secret],
            },
        )

    @responses.activate
    def test_uses_self_link_as_topic(self):
        responses.get("https://remote.example.com/alias", body=REMOTE_FEED)
        responses.post("https://hub.example.net/", status=202)

        with self.captureOnCommitCallbacks(execute=True):
            feed = Subscription.objects.follow(self.person, "https://remote.example.com/alias")

        self.assertEqual(feed.url, "https://remote.example.com/feed.atom")
        self.assertFalse(Feed.objects.filter(url="https://remote.example.com/alias").exists())

    @responses.activate
    def test_hub_refusal_marks_subscription_failed(self):
        responses.get("https://remote.example.com/feed.atom", body=REMOTE_FEED)
        responses.post("https://hub.example.net/", status=403)

        with (
            patch.object(models, "logger") as logger,
            self.captureOnCommitCallbacks(execute=True),
        ):
            feed = Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        self.assertTrue(feed)
        subscription = Subscription.objects.get(follower=self.person)
        self.assertEqual(subscription.state, Subscription.FAILED)
        self.assertFalse(subscription.requested)
        logger.warning.assert_called_once()

    @responses.activate
    def test_returns_none_when_feed_cannot_be_fetched(self):
        responses.get("https://remote.example.com/feed.atom", status=404)

        with patch.object(models, "logger"):
            result = Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        self.assertIsNone(result)
        self.assertFalse(Feed.objects.filter(url="https://remote.example.com/feed.atom").exists())

    @responses.activate
    def test_returns_none_when_feed_is_not_atom(self):
        responses.get("https://remote.example.com/feed.atom", body=b"<html></html>")

        with patch.object(models, "logger"):
            result = Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        self.assertIsNone(result)
        self.assertFalse(self.person.following.exists())

    @responses.activate
    def test_no_subscription_when_feed_has_no_hub(self):
        responses.get(
            "https://remote.example.com/feed.atom",
            body=REMOTE_FEED.replace(b'<link rel="hub" href="https://hub.example.net/"/>', b""),
        )

        with patch.object(models, "logger"), self.captureOnCommitCallbacks(execute=True):
            feed = Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        self.assertTrue(self.person.is_following(feed.url))
        self.assertFalse(Subscription.objects.exists())

    @responses.activate
    def test_following_local_feed_needs_no_hub(self):
        other = local_person()

        result = Subscription.objects.follow(self.person, other.feed.url)

        self.assertEqual(result, other.feed)
        self.assertTrue(self.person.is_following(other.feed.url))
        self.assertFalse(Subscription.objects.exists())
        self.assertEqual(len(responses.calls), 0)

    @responses.activate
    def test_following_again_replaces_token(self):
        responses.get("https://remote.example.com/feed.atom", body=REMOTE_FEED)
        responses.post("https://hub.example.net/", status=202)
        with self.captureOnCommitCallbacks(execute=True):
            Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")
        first_token = Subscription.objects.get().verify_token

        with self.captureOnCommitCallbacks(execute=True):
            Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        subscription = Subscription.objects.get()
        self.assertNotEqual(subscription.verify_token, first_token)
        self.assertEqual(Update.objects.count(), 2)

    @override_settings(HUBS_USE_QUEUE=True)
    @responses.activate
    def test_queues_subscription_request_when_using_queue(self):
        responses.get("https://remote.example.com/feed.atom", body=REMOTE_FEED)

        with (
            patch.object(tasks, "request_hub_subscription") as request_hub_subscription,
            self.captureOnCommitCallbacks(execute=True),
        ):
            Subscription.objects.follow(self.person, "https://remote.example.com/feed.atom")

        request_hub_subscription.delay.assert_called_once_with(Subscription.objects.get().pk)

    def test_unfollow_forgets_subscription(self):
        feed = FeedFactory()
        self.person.following.add(feed)
        Subscription.objects.create(
            follower=self.person,
            callback=feed,
            topic=feed.url,
            hub="https://hub.example.net/",
            verify_token="*TOKEN*",
        )

        Subscription.objects.unfollow(self.person, feed)

        self.assertFalse(self.person.is_following(feed.url))
        self.assertFalse(Subscription.objects.exists())
        self.assertTrue(Feed.objects.filter(pk=feed.pk).exists())


class TestAnswerChallenge(TestCase):
    def setUp(self):
        self.feed = FeedFactory(url="https://remote.example.com/feed.atom")
        self.subscription = Subscription.objects.create(
            follower=local_person(),
            callback=self.feed,
            topic=self.feed.url,
            hub="https://hub.example.net/",
            verify_token="*TOKEN*",
        )

    def params(self, **kwargs):
        return {
            "hub.mode": "subscribe",
            "hub.topic": self.feed.url,
            "hub.challenge": "*CHALLENGE*",
            "hub.verify_token": "*TOKEN*",
            **kwargs,
        }

    def test_records_lease(self):
        before = timezone.now()

        result = Subscription.objects.answer_challenge(
            self.feed, "/", self.params(**{"hub.lease_seconds": "3600"})
        )

        self.assertEqual(result.status, 200)
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.state, Subscription.VERIFIED)
        self.assertGreaterEqual(self.subscription.lease_expires, before + timedelta(seconds=3600))

    def test_ignores_nonsense_lease(self):
        Subscription.objects.answer_challenge(
            self.feed, "/", self.params(**{"hub.lease_seconds": "forever"})
        )

        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.state, Subscription.VERIFIED)
        self.assertIsNone(self.subscription.lease_expires)

    def test_token_of_failed_subscription_is_not_accepted(self):
        self.subscription.state = Subscription.FAILED
        self.subscription.save()

        result = Subscription.objects.answer_challenge(self.feed, "/", self.params())

        self.assertEqual(result.status, 404)

    def test_token_for_other_callback_is_not_accepted(self):
        other = FeedFactory()

        result = Subscription.objects.answer_challenge(
            other, "/", self.params(**{"hub.topic": other.url})
        )

        self.assertEqual(result.status, 404)
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.state, Subscription.PENDING)


class TestTasks(TestCase):
    def test_notify_feed_hubs(self):
        feed = FeedFactory()

        with patch.object(tasks, "notify_hubs", return_value=3) as notify_hubs:
            result = tasks.notify_feed_hubs(feed.pk)

        self.assertEqual(result, 3)
        notify_hubs.assert_called_once_with(feed)

    def test_notify_feed_hubs_of_missing_feed(self):
        with patch.object(tasks, "notify_hubs") as notify_hubs:
            result = tasks.notify_feed_hubs(9999)

        self.assertEqual(result, 0)
        notify_hubs.assert_not_called()

    def test_request_hub_subscription(self):
        feed = FeedFactory()
        subscription = Subscription.objects.create(
            follower=PersonFactory(),
            callback=feed,
            topic=feed.url,
            hub="https://hub.example.net/",
            verify_token="*TOKEN*",
        )

        with patch.object(Subscription, "request", return_value=True) as request:
            tasks.request_hub_subscription(subscription.pk)

        request.assert_called_once_with()


class TestViews(TestCase):
    def setUp(self):
        self.person = local_person()
        self.client.force_login(self.person.login)

    def test_subscribe(self):
        feed = FeedFactory()

        with patch.object(Subscription.objects, "follow", return_value=feed) as follow:
            response = self.client.post("/subscribe", {"url": feed.url})

        follow.assert_called_once_with(self.person, feed.url)
        self.assertRedirects(response, feed.get_absolute_url(), fetch_redirect_response=False)

    def test_subscribe_reports_failure(self):
        with patch.object(Subscription.objects, "follow", return_value=None):
            response = self.client.post("/subscribe", {"url": "https://example.com/feed"})

        self.assertRedirects(
            response, self.person.feed.get_absolute_url(), fetch_redirect_response=False
        )

    def test_unsubscribe(self):
        feed = FeedFactory()
        self.person.following.add(feed)

        self.client.post("/unsubscribe", {"url": feed.url})

        self.assertFalse(self.person.is_following(feed.url))

    def test_follow_and_unfollow_local_person(self):
        other = local_person(username="bob")

        self.client.post("/users/bob/follow")
        self.assertTrue(self.person.is_following(other.feed.url))

        self.client.post("/users/bob/unfollow")
        self.assertFalse(self.person.is_following(other.feed.url))

    def test_cannot_follow_self(self):
        self.client.post(f"/users/{self.person.slug}/follow")

        self.assertFalse(self.person.following.exists())
        self.assertEqual(Person.objects.count(), 1)
