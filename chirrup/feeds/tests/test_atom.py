"""Tests for rendering and parsing Atom documents."""

from datetime import datetime, timedelta, timezone

from django.test import TestCase, override_settings

from ..atom import Document, MalformedDocument, parse, parse_feed, render
from .factories import FeedFactory, PersonFactory, UpdateFactory, local_person


class TestDocument(TestCase):
    def test_can_write_empty_feed(self):
        doc = Document("feed")

        result = doc.to_bytes().decode("UTF-8")

        self.assertEqual(
            result,
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<feed xmlns="http://www.w3.org/2005/Atom"/>',
        )

    def test_can_write_xml_lang_and_nested_elements(self):
        doc = Document("feed", {"xml:lang": "en-GB"})
        doc.add_child("entry").add_child("id", {}, "urn:foo:bar")

        result = doc.to_bytes().decode("UTF-8")

        self.assertEqual(
            result,
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<feed xmlns="http://www.w3.org/2005/Atom" xml:lang="en-GB">\n'
            "    <entry>\n"
            "        <id>urn:foo:bar</id>\n"
            "    </entry>\n"
            "</feed>",
        )


@override_settings(LANGUAGE_CODE="en")
class TestRender(TestCase):
    def test_renders_feed_with_hub_and_entry(self):
        author = PersonFactory(native_name="Alice Example", url="")
        feed = FeedFactory(
            author=author,
            url="https://example.org/feeds/42.atom",
            title="Alice’s updates",
            hubs=["https://hub.example.net/"],
        )
        UpdateFactory(
            feed=feed,
            text="Hello <world> & all",
            entry_id="tag:example.org,2011:1",
            published=datetime(2011, 3, 4, 5, 6, 7, tzinfo=timezone.utc),
        )

        result = render(feed, "https://example.org/").decode("UTF-8")

        self.assertEqual(
            result,
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<feed xmlns="http://www.w3.org/2005/Atom" xml:lang="en">\n'
            "    <id>https://example.org/feeds/42.atom</id>\n"
            "    <title>Alice’s updates</title>\n"
            "    <updated>2011-03-04T05:06:07Z</updated>\n"
            "    <author>\n"
            "        <name>Alice Example</name>\n"
            "    </author>\n"
            f'    <link href="https://example.org/feeds/{feed.pk}.atom" rel="self" type="application/atom+xml"/>\n'
            '    <link href="https://hub.example.net/" rel="hub"/>\n'
            "    <entry>\n"
            "        <id>tag:example.org,2011:1</id>\n"
            "        <title>Hello &lt;world&gt; &amp; all</title>\n"
            "        <author>\n"
            "            <name>Alice Example</name>\n"
            "        </author>\n"
            '        <content type="text">Hello &lt;world&gt; &amp; all</content>\n'
            "        <published>2011-03-04T05:06:07Z</published>\n"
            "        <updated>2011-03-04T05:06:07Z</updated>\n"
            "    </entry>\n"
            "</feed>",
        )

    def test_omits_hub_links_when_there_are_no_hubs(self):
        feed = FeedFactory()

        result = render(feed, "https://example.org/")

        self.assertNotIn(b'rel="hub"', result)
        self.assertIn(f'href="https://example.org/feeds/{feed.pk}.atom" rel="self"'.encode(), result)

    def test_entries_are_newest_first(self):
        feed = FeedFactory()
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        older = UpdateFactory(feed=feed, text="older", published=now - timedelta(days=1))
        newer = UpdateFactory(feed=feed, text="newer", published=now)

        entries = parse(render(feed, "https://example.org/"))

        self.assertEqual([e.text for e in entries], [newer.text, older.text])

    @override_settings(FEEDS_DOMAIN="example.org:8000")
    def test_synthesizes_stable_entry_id_for_local_update(self):
        feed = FeedFactory()
        update = UpdateFactory(feed=feed, entry_id="")

        first = parse(render(feed, "https://example.org/"))
        second = parse(render(feed, "https://example.org/"))

        self.assertEqual(
            first[0].entry_id,
            f"tag:example.org,{update.created:%Y-%m-%d}:update/{update.pk}",
        )
        self.assertEqual(first[0].entry_id, second[0].entry_id)


class TestRoundTrip(TestCase):
    def test_parse_of_render_gives_back_updates_in_order(self):
        feed = FeedFactory()
        other = PersonFactory(native_name="Bob")
        UpdateFactory.create_batch(3, feed=feed)
        UpdateFactory(feed=feed, author=other, text="from Bob")

        entries = parse(render(feed, "https://example.org/"))

        self.assertEqual(
            [(e.text, e.author, e.published) for e in entries],
            [
                (u.text, u.author.native_name, u.published)
                for u in feed.updates_for_publication()
            ],
        )

    def test_special_characters_survive(self):
        feed = FeedFactory()
        text = 'Quotes " and \' and ]]> and <b>tags</b> & émoji 🐦\nSecond line'
        UpdateFactory(feed=feed, text=text)

        (entry,) = parse(render(feed, "https://example.org/"))

        self.assertEqual(entry.text, text)

    def test_published_control_characters_and_carriage_returns_survive(self):
        person = local_person()
        feed = person.feed
        update = feed.publish(person, "bell \x07 here\rnext\r\nlast\x0c")

        (entry,) = parse(render(feed, "https://example.org/"))

        self.assertEqual(update.text, "bell  here\nnext\nlast")
        self.assertEqual(entry.text, update.text)

    def test_stored_control_characters_do_not_spoil_feed(self):
        feed = FeedFactory()
        UpdateFactory(feed=feed, text="bell \x07 here")
        UpdateFactory(feed=feed, text="fine")

        entries = parse(render(feed, "https://example.org/"))

        self.assertEqual(sorted(e.text for e in entries), ["bell  here", "fine"])

    def test_empty_feed_has_no_entries(self):
        feed = FeedFactory()

        result = parse_feed(render(feed, "https://example.org/"))

        self.assertEqual(result.entries, [])
        self.assertEqual(result.feed_id, feed.url)
        self.assertEqual(result.self_url, f"https://example.org/feeds/{feed.pk}.atom")


class TestParse(TestCase):
    def test_collects_feed_links_and_author(self):
        result = parse_feed(
            b'<?xml version="1.0"?>'
            b'<feed xmlns="http://www.w3.org/2005/Atom">'
            b"<id>https://remote.example.com/feed</id>"
            b"<title>Remote</title>"
            b'<link rel="self" href="https://remote.example.com/feed.atom"/>'
            b'<link rel="hub" href="https://hub1.example.net/"/>'
            b'<link rel="hub" href="https://hub2.example.net/"/>'
            b'<link href="https://remote.example.com/"/>'
            b"<author><name>Carol</name><uri>https://remote.example.com/carol</uri></author>"
            b"</feed>"
        )

        self.assertEqual(result.feed_id, "https://remote.example.com/feed")
        self.assertEqual(result.title, "Remote")
        self.assertEqual(result.self_url, "https://remote.example.com/feed.atom")
        self.assertEqual(result.hub_urls, ["https://hub1.example.net/", "https://hub2.example.net/"])
        self.assertEqual(result.author, "Carol")
        self.assertEqual(result.author_uri, "https://remote.example.com/carol")

    def test_entry_without_author_uses_feed_author_even_if_it_comes_after(self):
        (entry,) = parse(
            b'<feed xmlns="http://www.w3.org/2005/Atom">'
            b"<entry><id>urn:x:1</id><updated>2020-01-01T00:00:00Z</updated>"
            b"<content>Hi</content></entry>"
            b"<author><name>Carol</name></author>"
            b"</feed>"
        )

        self.assertEqual(entry.author, "Carol")
        self.assertEqual(entry.published, datetime(2020, 1, 1, tzinfo=timezone.utc))

    def test_prefers_published_to_updated(self):
        (entry,) = parse(
            b'<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:1</id>'
            b"<updated>2020-02-02T00:00:00Z</updated>"
            b"<published>2020-01-01T12:00:00+02:00</published>"
            b"<content>Hi</content></entry></feed>"
        )

        self.assertEqual(entry.published, datetime(2020, 1, 1, 10, tzinfo=timezone.utc))

    def test_assumes_utc_when_no_offset(self):
        (entry,) = parse(
            b'<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:1</id>'
            b"<published>2020-01-01T12:00:00</published><title>T</title></entry></feed>"
        )

        self.assertEqual(entry.published, datetime(2020, 1, 1, 12, tzinfo=timezone.utc))
        self.assertEqual(entry.text, "T")  # Title used in the absence of content.

    def test_flattens_xhtml_content(self):
        (entry,) = parse(
            b'<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:1</id>'
            b"<published>2020-01-01T12:00:00Z</published>"
            b'<content type="xhtml"><div xmlns="http://www.w3.org/1999/xhtml">'
            b"Hello <b>bold</b> world</div></content></entry></feed>"
        )

        self.assertEqual(entry.text, "Hello bold world")

    def test_accepts_str(self):
        entries = parse(
            '<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:é</id>'
            "<published>2020-01-01T12:00:00Z</published></entry></feed>"
        )

        self.assertEqual(entries[0].entry_id, "urn:x:é")

    def test_rejects_entry_without_id(self):
        with self.assertRaises(MalformedDocument):
            parse(
                b'<feed xmlns="http://www.w3.org/2005/Atom"><entry>'
                b"<published>2020-01-01T12:00:00Z</published></entry></feed>"
            )

    def test_rejects_entry_without_date(self):
        with self.assertRaises(MalformedDocument):
            parse(b'<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:1</id></entry></feed>')

    def test_rejects_entry_with_nonsense_date(self):
        with self.assertRaises(MalformedDocument):
            parse(
                b'<feed xmlns="http://www.w3.org/2005/Atom"><entry><id>urn:x:1</id>'
                b"<published>last Tuesday</published></entry></feed>"
            )

    def test_rejects_badly_formed_xml(self):
        with self.assertRaises(MalformedDocument):
            parse(b'<feed xmlns="http://www.w3.org/2005/Atom"><entry>')

    def test_rejects_empty_document(self):
        with self.assertRaises(MalformedDocument):
            parse(b"")

    def test_rejects_documents_that_are_not_atom_feeds(self):
        with self.assertRaises(MalformedDocument):
            parse(b"<rss><channel/></rss>")
