"""Database models for Chirrup feeds: authors, their feeds, and the updates in them."""

import logging
import re
import uuid

from django.conf import settings
from django.db import models, transaction
from django.db.models import Q
from django.urls import reverse
from django.utils import timezone
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _

from .atom import xml_text

logger = logging.getLogger(__name__)

MAX_LENGTH = 4000

# Local feeds get this kind of URL until their primary key is known.
PLACEHOLDER_URL_PREFIX = "urn:uuid:"

HASHTAG_RE = re.compile(r"(?<![\w#])#(\w+)")


class PersonManager(models.Manager):
    """Manager for Person instances."""

    def for_login(self, login):
        """Return the person for this Django user (raises DoesNotExist if none)."""
        return self.get(login=login)

    def get_remote(self, native_name, url=""):
        """Return a person without a login known by this name and profile URL, creating one if need be."""
        person = self.filter(login__isnull=True, native_name=native_name, url=url).first()
        return person or self.create(native_name=native_name, url=url)


class Person(models.Model):
    """Author of updates.

    A person with a login has an account here and publishes a local feed.
    A person without one is known to us only as the author of a remote feed.
    """

    login = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        models.SET_NULL,
        null=True,
        blank=True,
        verbose_name=_("login"),
        help_text=_("If supplied, this person has an account on this system."),
    )
    native_name = models.CharField(
        _("native name"),
        max_length=250,
        help_text=_("How this person’s name is presented."),
    )
    slug = models.SlugField(
        _("slug"),
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text=_("Used in URLs for this person’s pages. Only local accounts have one."),
    )
    url = models.URLField(
        _("URL"),
        max_length=MAX_LENGTH,
        blank=True,
        help_text=_("Profile page of a remote author, as given in their feed."),
    )
    following = models.ManyToManyField(
        "Feed",
        blank=True,
        related_name="followers",
        related_query_name="follower",
        verbose_name=_("following"),
        help_text=_("Feeds whose updates appear in this person’s timeline."),
    )
    created = models.DateTimeField(_("created"), default=timezone.now)

    objects = PersonManager()

    class Meta:
        verbose_name = _("person")
        verbose_name_plural = _("persons")

    def __str__(self):
        return self.native_name

    @property
    def is_local(self):
        return self.login_id is not None

    @property
    def feed(self):
        """The feed this person publishes, or None."""
        return self.feeds.order_by("pk").first()

    def is_following(self, url):
        return self.following.filter(url=url).exists()

    def timeline(self):
        """Updates from followed feeds and from this person’s own feeds, newest first."""
        return (
            Update.objects.filter(Q(feed__follower=self) | Q(feed__author=self))
            .distinct()
            .order_by("-published", "-created")
        )

    def followers(self):
        """Persons who follow any of this person’s feeds."""
        return Person.objects.filter(following__author=self).distinct().order_by("native_name")

    def followed(self):
        """Authors of the feeds this person follows."""
        return Person.objects.filter(feed__follower=self).distinct().order_by("native_name")


class Hub(models.Model):
    """A PubSubHubbub hub that relays notifications for feeds that use it."""

    url = models.URLField(
        _("URL"),
        max_length=MAX_LENGTH,
        unique=True,
    )

    created = models.DateTimeField(_("created"), default=timezone.now)

    class Meta:
        verbose_name = _("hub")
        verbose_name_plural = _("hubs")

    def __str__(self):
        return self.url


class FeedManager(models.Manager):
    """Manager for Feed instances."""

    def create_local_feed(self, person, hub_urls=None):
        """Create the feed that publishes updates by this local person.

        Arguments --
            person -- Person instance that owns the feed
            hub_urls -- hubs to advertise; defaults to `FEEDS_HUB_URLS`

        The URL of the feed is derived from its primary key, so is only
        known after the row is inserted.
        """
        if hub_urls is None:
            hub_urls = settings.FEEDS_HUB_URLS
        with transaction.atomic():
            feed = self.create(
                author=person,
                url=f"{PLACEHOLDER_URL_PREFIX}{uuid.uuid4()}",
                title=_("Updates from %(name)s") % {"name": person.native_name},
            )
            feed.url = make_absolute_url(feed.get_absolute_url())
            feed.save(update_fields=["url"])
            for url in hub_urls:
                hub, is_new = Hub.objects.get_or_create(url=url)
                feed.hubs.add(hub)
        return feed


class Feed(models.Model):
    """A person’s stream of updates, identified by its URL.

    Local feeds are published from here. Remote feeds are mirrored
    here: hubs push their new entries to our copy.
    """

    author = models.ForeignKey(
        Person,
        models.CASCADE,
        related_name="feeds",
        related_query_name="feed",
        verbose_name=_("author"),
    )
    hubs = models.ManyToManyField(
        Hub,
        blank=True,
        related_name="feeds",
        related_query_name="feed",
        verbose_name=_("hubs"),
        help_text=_("Hubs that are told when this feed changes."),
    )

    url = models.URLField(
        _("URL"),
        max_length=MAX_LENGTH,
        unique=True,
        help_text=_("Canonical URL of the feed. Never changes once created."),
    )
    title = models.CharField(
        _("title"),
        max_length=MAX_LENGTH,
        blank=True,
    )
    secret = models.CharField(
        _("secret"),
        max_length=200,
        blank=True,
        help_text=_("Shared with the hub to sign content pushed to us for this feed."),
    )
    created = models.DateTimeField(_("created"), default=timezone.now)

    objects = FeedManager()

    class Meta:
        verbose_name = _("feed")
        verbose_name_plural = _("feeds")

    def __str__(self):
        return self.url

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._saved_url = instance.__dict__.get("url")
        return instance

    def save(self, *args, **kwargs):
        saved_url = getattr(self, "_saved_url", None)
        if (
            saved_url
            and saved_url != self.url
            and not saved_url.startswith(PLACEHOLDER_URL_PREFIX)
        ):
            raise ValueError(f"{saved_url}: cannot change URL of feed to {self.url}")
        super().save(*args, **kwargs)
        self._saved_url = self.url

    def get_absolute_url(self):
        return reverse("feeds:feed", kwargs={"pk": self.pk})

    @property
    def is_local(self):
        return self.author.is_local

    def updates_for_publication(self):
        """Updates in the order they appear in the Atom document."""
        return self.updates.select_related("author").order_by("-published", "-created")

    def lock(self):
        """Take the per-feed lock for the rest of the current transaction.

        Changes to the updates and hubs of a feed are made while holding it.
        On SQLite the row lock is a no-op; there the whole database is locked
        when the transaction begins (see `transaction_mode` in settings).
        """
        Feed.objects.select_for_update().filter(pk=self.pk).first()

    def publish(self, author, text):
        """Append a new local update and arrange for hubs to hear about it.

        Line breaks become LF, and characters an Atom feed cannot carry are dropped.
        """
        with transaction.atomic():
            self.lock()
            update = self.updates.create(author=author, text=xml_text(text))
            self.ping_hubs()
        logger.info(f"{self}: published update {update.pk}")
        return update

    def remove_update(self, update):
        """Delete one of this feed’s updates (on request of its author)."""
        with transaction.atomic():
            self.lock()
            update.delete()
            self.ping_hubs()

    def add_hub(self, url):
        with transaction.atomic():
            self.lock()
            hub, is_new = Hub.objects.get_or_create(url=url)
            self.hubs.add(hub)
        return hub

    def remove_hub(self, url):
        with transaction.atomic():
            self.lock()
            self.hubs.remove(*Hub.objects.filter(url=url))

    def ping_hubs(self):
        """Tell hubs this feed has changed, once the current transaction commits.

        Does nothing unless `HUBS_SEND_REQUESTS` is true.
        Queued as a Celery task if `HUBS_USE_QUEUE` is true.
        """
        if not settings.HUBS_SEND_REQUESTS:
            return
        from ..hubs import tasks
        from ..hubs.notifying import notify_hubs

        if settings.HUBS_USE_QUEUE:
            transaction.on_commit(lambda: tasks.notify_feed_hubs.delay(self.pk))
        else:
            transaction.on_commit(lambda: notify_hubs(self))


class UpdateQuerySet(models.QuerySet):
    def hashtag_search(self, tag):
        """Updates whose text contains #tag as a whole hashtag, ignoring case.

        The leading # of tag is optional. A tag that is not a single word matches nothing.
        """
        tag = tag.removeprefix("#")
        if not re.fullmatch(r"\w+", tag):
            return self.none()
        tag = tag.casefold()
        candidates = self.filter(text__icontains=f"#{tag}").values_list("pk", "text")
        pks = [
            pk
            for pk, text in candidates
            if any(m.casefold() == tag for m in HASHTAG_RE.findall(text))
        ]
        return self.filter(pk__in=pks)


class Update(models.Model):
    """A short text posted by a person to a feed.

    Local updates are created when posted here. Remote ones are created
    when their Atom entry is first seen, and remember its ID.
    """

    feed = models.ForeignKey(
        Feed,
        models.CASCADE,
        related_name="updates",
        related_query_name="update",
        verbose_name=_("feed"),
    )
    author = models.ForeignKey(
        Person,
        models.CASCADE,
        related_name="updates",
        related_query_name="update",
        verbose_name=_("author"),
    )
    text = models.TextField(_("text"), blank=True)
    entry_id = models.CharField(
        _("entry ID"),
        max_length=1000,
        blank=True,
        help_text=_("ID of the Atom entry this came from. Blank for local updates."),
    )
    published = models.DateTimeField(_("published"), default=timezone.now)
    created = models.DateTimeField(_("created"), default=timezone.now)

    objects = UpdateQuerySet.as_manager()

    class Meta:
        verbose_name = _("update")
        verbose_name_plural = _("updates")
        ordering = ["-published", "-created"]
        constraints = [
            models.UniqueConstraint(
                fields=["feed", "entry_id"],
                condition=~Q(entry_id=""),
                name="unique_entry_id_per_feed",
            ),
        ]

    def __str__(self):
        return self.short_title()

    def get_entry_id(self):
        """Return the Atom entry ID, which is the same every time the feed is rendered."""
        if self.entry_id:
            return self.entry_id
        host = settings.FEEDS_DOMAIN.split(":", 1)[0]
        return f"tag:{host},{self.created:%Y-%m-%d}:update/{self.pk}"

    def short_title(self):
        """Return first line of the text, shortened to 30-odd characters if need be."""
        if not self.text:
            return "#%d" % self.pk if self.pk else "(blank)"
        title = self.text.split("\n", 1)[0]
        if len(title) <= 30:
            return title
        pos = title.find(" ", 29)
        return "%s…" % title[:30] if pos < 0 else "%s …" % title[:pos]


def make_absolute_url(path):
    """Given a path (starting with a slash) return a complete URL on this site."""
    scheme = "http" if settings.FEEDS_DOMAIN_INSECURE else "https"
    return f"{scheme}://{settings.FEEDS_DOMAIN}{path}"


def handle_user_post_save(sender, instance, created, raw, **kwargs):
    """Give a newly created login its person and local feed."""
    if raw or not created:
        return
    slug = slugify(instance.get_username())[:64] or None
    if slug and Person.objects.filter(slug=slug).exists():
        slug = f"{slug[:50]}-{instance.pk}"
    person = Person.objects.create(
        login=instance,
        native_name=instance.get_full_name() or instance.get_username(),
        slug=slug,
    )
    Feed.objects.create_local_feed(person)
