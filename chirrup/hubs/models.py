"""Database models for subscriptions to remote feeds via their hubs."""

from datetime import timedelta
import logging
import secrets

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
import requests

from ..feeds.atom import ATOM_MEDIA_TYPE, MalformedDocument, parse_feed
from ..feeds.models import Feed, Person, make_absolute_url
from .protocol import (
    CALLBACK,
    CHALLENGE,
    LEASE_SECONDS,
    MODE,
    SECRET,
    SUBSCRIBE,
    TOPIC,
    VERIFY,
    VERIFY_TOKEN,
    handle_challenge,
)
from .receiving import merge_entries

logger = logging.getLogger(__name__)


def make_token():
    return secrets.token_hex(20)


class SubscriptionManager(models.Manager):
    """Manager for Subscription instances, and hence following and unfollowing."""

    def follow(self, person, url, timeout=None):
        """Make this person follow the feed at this URL.

        Arguments --
            person -- local Person who wants to follow the feed
            url -- URL of an Atom feed, here or on another site
            timeout -- seconds to wait for the remote site (default `HUBS_TIMEOUT`)

        Returns --
            the Feed followed, or None if it could not be fetched or understood.

        A local feed is simply added to the person’s following.
        A remote feed is fetched and mirrored here, and a subscription
        request is sent to its hub once the transaction commits.
        """
        feed = Feed.objects.filter(url=url).first()
        if feed and feed.is_local:
            person.following.add(feed)
            return feed

        if timeout is None:
            timeout = settings.HUBS_TIMEOUT
        try:
            r = requests.get(
                url,
                headers={"User-Agent": settings.FEEDS_FETCH_AGENT, "Accept": ATOM_MEDIA_TYPE},
                timeout=timeout,
            )
            r.raise_for_status()
            atom_feed = parse_feed(r.content)
        except requests.RequestException as e:
            logger.warning(f"{url}: could not fetch feed to follow: {e}")
            return None
        except MalformedDocument as e:
            logger.warning(f"{url}: could not understand feed to follow: {e}")
            return None

        topic = atom_feed.self_url or url
        with transaction.atomic():
            feed = Feed.objects.filter(url=topic).first()
            if feed and feed.is_local:
                person.following.add(feed)
                return feed
            if not feed:
                author = Person.objects.get_remote(atom_feed.author or topic, atom_feed.author_uri)
                feed = Feed.objects.create(
                    author=author,
                    url=topic,
                    title=atom_feed.title,
                    secret=make_token(),
                )
            elif not feed.secret:
                feed.secret = make_token()
                feed.save()
            for hub_url in atom_feed.hub_urls:
                feed.add_hub(hub_url)
            merge_entries(feed, atom_feed.entries)
            person.following.add(feed)

            hub_url = (atom_feed.hub_urls or list(feed.hubs.values_list("url", flat=True)))[:1]
            if hub_url:
                subscription, is_new = self.update_or_create(
                    follower=person,
                    topic=topic,
                    defaults={
                        "callback": feed,
                        "hub": hub_url[0],
                        "verify_token": make_token(),
                        "state": Subscription.PENDING,
                        "lease_expires": None,
                        "verified": None,
                    },
                )
                subscription.queue_request()
            else:
                logger.warning(f"{topic}: feed has no hub so will not be updated")
        return feed

    def unfollow(self, person, feed):
        """Stop this person following this feed, and forget their subscription to it."""
        with transaction.atomic():
            person.following.remove(feed)
            self.filter(follower=person, topic=feed.url).delete()

    def answer_challenge(self, feed, request_url, params):
        """Answer a hub’s request to verify a subscription.

        Arguments --
            feed -- the Feed at the callback URL, or None if there is no such feed
            request_url -- the URL requested by the hub
            params -- the query parameters (containing `hub.challenge`)

        Returns a ChallengeResponse, and records the outcome on the
        subscription the token belongs to, if any.
        """
        topic = params.get(TOPIC)
        verify_token = params.get(VERIFY_TOKEN)
        subscription = (
            self.filter(callback=feed, verify_token=verify_token)
            .exclude(state=Subscription.FAILED)
            .first()
            if feed and verify_token
            else None
        )
        result = handle_challenge(
            request_url,
            topic,
            params.get(CHALLENGE, ""),
            verify_token,
            feed.url if feed else None,
            subscription.verify_token if subscription else None,
        )
        if subscription:
            subscription.record_verification(result.verified, params.get(LEASE_SECONDS))
        return result


class Subscription(models.Model):
    """A person’s subscription, via a hub, to a remote feed.

    Basic plan is as follows:
    - Person follows a remote feed; it is mirrored here (the callback feed)
    - Subscription is created pending, with a fresh verify token
    - Request is sent to the hub after the transaction commits
    - Hub calls the callback with the token and a challenge; a match verifies it
    - Hub then pushes new entries to the callback
    """

    PENDING, VERIFIED, FAILED = "pending", "verified", "failed"
    STATE_CHOICES = [
        (PENDING, _("Pending")),
        (VERIFIED, _("Verified")),
        (FAILED, _("Failed")),
    ]

    follower = models.ForeignKey(
        Person,
        models.CASCADE,
        related_name="subscriptions",
        related_query_name="subscription",
        verbose_name=_("follower"),
    )
    callback = models.ForeignKey(
        Feed,
        models.CASCADE,
        related_name="subscriptions",
        related_query_name="subscription",
        verbose_name=_("callback"),
        help_text=_("Our copy of the feed, whose URL the hub calls."),
    )

    topic = models.URLField(
        _("topic"),
        max_length=4000,
        help_text=_("URL of the remote feed."),
    )
    hub = models.URLField(
        _("hub"),
        max_length=4000,
        help_text=_("Hub the subscription was requested from."),
    )
    verify_token = models.CharField(
        _("verify token"),
        max_length=255,
        help_text=_("Chosen when subscribing; the hub must send it back when verifying."),
    )
    state = models.CharField(
        _("state"),
        max_length=20,
        choices=STATE_CHOICES,
        default=PENDING,
    )
    requested = models.DateTimeField(
        _("requested"),
        null=True,
        blank=True,
        help_text=_("When the hub accepted the subscription request."),
    )
    verified = models.DateTimeField(
        _("verified"),
        null=True,
        blank=True,
        help_text=_("When the hub last verified the subscription."),
    )
    lease_expires = models.DateTimeField(
        _("lease expires"),
        null=True,
        blank=True,
    )
    created = models.DateTimeField(_("created"), default=timezone.now)

    objects = SubscriptionManager()

    class Meta:
        verbose_name = _("subscription")
        verbose_name_plural = _("subscriptions")
        unique_together = [["follower", "topic"]]

    def __str__(self):
        return f"{self.follower} → {self.topic}"

    @property
    def callback_url(self):
        return make_absolute_url(self.callback.get_absolute_url())

    def queue_request(self):
        """Send the subscription request to the hub once the current transaction commits.

        Does nothing unless `HUBS_SEND_REQUESTS` is true.
        """
        if not settings.HUBS_SEND_REQUESTS:
            return
        from . import tasks

        if settings.HUBS_USE_QUEUE:
            transaction.on_commit(lambda: tasks.request_hub_subscription.delay(self.pk))
        else:
            transaction.on_commit(lambda: self.request())

    def request(self, timeout=None):
        """Ask the hub to send entries of the topic to our callback.

        Returns whether the hub accepted. The subscription is not verified
        until the hub calls back with our token.
        """
        if timeout is None:
            timeout = settings.HUBS_TIMEOUT
        try:
            r = requests.post(
                self.hub,
                data=[
                    (MODE, SUBSCRIBE),
                    (CALLBACK, self.callback_url),
                    (TOPIC, self.topic),
                    (VERIFY, "async"),
                    (VERIFY, "sync"),
                    (VERIFY_TOKEN, self.verify_token),
                    (SECRET, self.callback.secret),
                ],
                headers={"User-Agent": settings.FEEDS_FETCH_AGENT},
                timeout=timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            logger.warning(f"{self}: could not reach hub {self.hub}: {e}")
            self.mark_failed()
            return False
        if not 200 <= r.status_code < 300:
            logger.warning(f"{self}: hub {self.hub} refused subscription: {r.status_code}")
            self.mark_failed()
            return False
        self.requested = timezone.now()
        self.save(update_fields=["requested"])
        return True

    def mark_failed(self):
        # Only pending: the hub may already have verified it (synchronous verification).
        if Subscription.objects.filter(pk=self.pk, state=self.PENDING).update(state=self.FAILED):
            self.state = self.FAILED

    def record_verification(self, verified, lease_seconds=None):
        """Record the outcome of the hub’s verification request."""
        now = timezone.now()
        if verified:
            self.state = self.VERIFIED
            self.verified = now
            try:
                self.lease_expires = now + timedelta(seconds=int(lease_seconds)) if lease_seconds else None
            except ValueError:
                self.lease_expires = None
        else:
            self.state = self.FAILED
        self.save()
        logger.info(f"{self}: {self.state}")
