"""Receiving entries that hubs push to our mirrors of remote feeds."""

from dataclasses import dataclass
import logging

from django.db import IntegrityError, transaction

from ..feeds.atom import parse
from ..feeds.models import Feed, Person
from .protocol import signature_matches

logger = logging.getLogger(__name__)


class UnknownFeed(Exception):
    """There is no feed with the ID content was pushed to."""


class InvalidSignature(Exception):
    """Pushed content was not signed with the feed’s secret."""


@dataclass
class IngestResult:
    accepted: int = 0
    rejected: int = 0


def ingest(feed_pk, raw_body, request_url, signature_header):
    """Add entries pushed by a hub to the feed with this ID.

    Arguments --
        feed_pk -- ID of the feed, from the callback URL
        raw_body -- bytes of the Atom document, exactly as received
        request_url -- the callback URL, for the log
        signature_header -- value of X-Hub-Signature, or None

    Returns an IngestResult counting new entries (accepted) and ones we
    already had (rejected). Raises UnknownFeed, InvalidSignature, or
    MalformedDocument, in which case nothing has been changed.
    """
    try:
        feed = Feed.objects.select_related("author").get(pk=feed_pk)
    except Feed.DoesNotExist:
        raise UnknownFeed(feed_pk)

    if not signature_matches(feed.secret, raw_body, signature_header):
        logger.warning(f"{request_url}: discarding push for {feed}: bad signature")
        raise InvalidSignature(feed.url)

    entries = parse(raw_body)
    result = merge_entries(feed, entries)
    logger.info(
        f"{request_url}: {feed}: accepted {result.accepted}, rejected {result.rejected}"
    )
    return result


def merge_entries(feed, entries):
    """Create updates for entries not already in this feed.

    An entry whose ID the feed already has is counted as rejected;
    this is normal, since hubs may deliver the same entry more than once.
    """
    result = IngestResult()
    with transaction.atomic():
        feed.lock()
        known = set(
            feed.updates.filter(entry_id__in=[e.entry_id for e in entries]).values_list(
                "entry_id", flat=True
            )
        )
        for entry in entries:
            if entry.entry_id in known:
                result.rejected += 1
                continue
            author = author_of_entry(feed, entry)
            try:
                with transaction.atomic():
                    feed.updates.create(
                        author=author,
                        text=entry.text,
                        entry_id=entry.entry_id,
                        published=entry.published,
                    )
            except IntegrityError:
                # Stored by a concurrent push since `known` was read.
                result.rejected += 1
                continue
            known.add(entry.entry_id)
            result.accepted += 1
    return result


def author_of_entry(feed, entry):
    """Return the Person who wrote this entry, usually the author of the feed."""
    if not entry.author or entry.author == feed.author.native_name:
        return feed.author
    return Person.objects.get_remote(entry.author, entry.author_uri)
