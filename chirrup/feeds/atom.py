"""Atom documents for feeds.

Rendering builds a small tree of `Element` instances and ‘parses’ it
to the standard SAX `XMLGenerator`, so that namespace declarations all
end up on the root element. Parsing goes the other way: a SAX handler
picks out the feed-level links and the entries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
import io
import re
from urllib.parse import urljoin
from xml.sax import SAXException, make_parser
from xml.sax.handler import (
    ContentHandler,
    feature_external_ges,
    feature_external_pes,
    feature_namespaces,
)
from xml.sax.saxutils import XMLGenerator

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

ATOM_NS = "http://www.w3.org/2005/Atom"
XML_NS = "http://www.w3.org/XML/1998/namespace"
ATOM_MEDIA_TYPE = "application/atom+xml"

PREFIX_NAMESPACES = {"": ATOM_NS, "xml": XML_NS}

# Characters an XML 1.0 document cannot contain, even as character references.
NOT_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class MalformedDocument(Exception):
    """Data is not well-formed XML, is not an Atom feed, or has an entry missing its ID or date."""


def xml_text(s):
    """Return s with line breaks as LF and without characters XML cannot carry.

    Parsers turn a CR into LF anyway, so this is what a reader would get back.
    """
    return NOT_XML_CHARS.sub("", s.replace("\r\n", "\n").replace("\r", "\n"))


@dataclass
class AtomEntry:
    entry_id: str
    text: str
    author: str
    published: datetime
    author_uri: str = ""


@dataclass
class AtomFeed:
    feed_id: str = ""
    title: str = ""
    author: str = ""
    author_uri: str = ""
    self_url: str = ""
    hub_urls: list = field(default_factory=list)
    entries: list = field(default_factory=list)


def expand_qname(qname, is_attribute=False):
    """Given a qname like `link` or `xml:lang`, return (NAMESPACE_URL, LOCAL_NAME).

    Unprefixed element names are in the Atom namespace;
    unprefixed attribute names are in no namespace.
    """
    prefix, _, lname = qname.rpartition(":")
    if not prefix and is_attribute:
        return None, lname
    return PREFIX_NAMESPACES[prefix], lname


class Element:
    """One element in a document being written."""

    indent_amount = 4

    def __init__(self, qname, attrs=None, text=None):
        self.qname = qname
        self.attrs = attrs or {}
        self.text = text or ""
        self.child_elements = []

    def add_child(self, qname, attrs=None, text=None):
        """Create a new element and make it a child of this one."""
        elt = Element(qname, attrs, text)
        self.child_elements.append(elt)
        return elt

    def sax_to(self, handler, indent=0):
        """Send this element and its children to this SAX handler."""
        name = expand_qname(self.qname)
        attrs = {expand_qname(k, is_attribute=True): xml_text(v) for k, v in self.attrs.items()}
        if indent:
            handler.ignorableWhitespace("\n" + " " * (self.indent_amount * indent))
        handler.startElementNS(name, self.qname, attrs)
        if self.text:
            handler.characters(xml_text(self.text))
        for elt in self.child_elements:
            elt.sax_to(handler, indent + 1)
        if self.child_elements:
            handler.ignorableWhitespace("\n" + " " * (self.indent_amount * indent))
        handler.endElementNS(name, self.qname)


class Document(Element):
    """Root element of an Atom document, with Atom as the default namespace."""

    def to_bytes(self):
        """Return indented UTF-8 XML."""
        buf = io.BytesIO()
        generator = XMLGenerator(buf, "UTF-8", short_empty_elements=True)
        generator.startDocument()
        # The xml prefix is predeclared, so only the default namespace needs a mapping.
        generator.startPrefixMapping("", ATOM_NS)
        self.sax_to(generator)
        generator.endPrefixMapping("")
        generator.endDocument()
        return buf.getvalue()


def atom_datetime(d):
    """Return this datetime formatted for Atom."""
    return d.isoformat().replace("+00:00", "Z")


def add_author(elt, person):
    author = elt.add_child("author")
    author.add_child("name", text=person.native_name)
    if person.url:
        author.add_child("uri", text=person.url)


def render(feed, base_url):
    """Return the Atom document for this feed, as bytes.

    Arguments --
        feed -- Feed instance
        base_url -- scheme and host of this site, used for the self link

    Entries are newest first.
    """
    updates = list(feed.updates_for_publication())

    doc = Document("feed", {"xml:lang": settings.LANGUAGE_CODE})
    doc.add_child("id", text=feed.url)
    doc.add_child("title", text=feed.title or feed.author.native_name)
    doc.add_child(
        "updated", text=atom_datetime(updates[0].published if updates else feed.created)
    )
    add_author(doc, feed.author)
    doc.add_child(
        "link",
        {
            "href": urljoin(base_url, feed.get_absolute_url()),
            "rel": "self",
            "type": ATOM_MEDIA_TYPE,
        },
    )
    for hub in feed.hubs.order_by("url"):
        doc.add_child("link", {"href": hub.url, "rel": "hub"})

    for update in updates:
        e = doc.add_child("entry")
        e.add_child("id", text=update.get_entry_id())
        e.add_child("title", text=update.short_title())
        add_author(e, update.author)
        e.add_child("content", {"type": "text"}, update.text)
        e.add_child("published", text=atom_datetime(update.published))
        e.add_child("updated", text=atom_datetime(update.published))

    return doc.to_bytes()


FEED = (ATOM_NS, "feed")
ENTRY = (ATOM_NS, "entry")
AUTHOR = (ATOM_NS, "author")
CONTENT = (ATOM_NS, "content")
LINK = (ATOM_NS, "link")


class AtomHandler(ContentHandler):
    """SAX handler that collects an AtomFeed."""

    def __init__(self):
        super().__init__()
        self.feed = AtomFeed()
        self.stack = []  # Pairs (NAME, TEXT_PARTS) for open elements.
        self.entry = None  # Dictionary of fields of the entry being read.

    def startElementNS(self, name, qname, attrs):
        if not self.stack and name != FEED:
            raise MalformedDocument(f"root element is {name[1]!r}, not an Atom feed")
        if name == ENTRY and self.parent() == FEED:
            self.entry = {}
        elif name == LINK and self.parent() == FEED:
            href = attrs.get((None, "href"))
            rel = attrs.get((None, "rel"), "alternate")
            if href and rel == "self":
                self.feed.self_url = href
            elif href and rel == "hub":
                self.feed.hub_urls.append(href)
        self.stack.append((name, []))

    def characters(self, content):
        if self.stack:
            self.stack[-1][1].append(content)

    def endElementNS(self, name, qname):
        _, parts = self.stack.pop()
        text = "".join(parts)
        parent = self.parent()
        if any(n == CONTENT for n, _ in self.stack):
            # Flatten markup nested in content (as in type="xhtml").
            self.stack[-1][1].append(text)
        elif name == ENTRY and self.entry is not None:
            self.feed.entries.append(self.finish_entry(self.entry))
            self.entry = None
        elif parent == ENTRY and self.entry is not None:
            if name[0] == ATOM_NS:
                self.entry.setdefault(name[1], text)
        elif parent == AUTHOR and len(self.stack) >= 2:
            owner = self.stack[-2][0]
            if owner == ENTRY and self.entry is not None:
                self.entry.setdefault("author_" + name[1], text.strip())
            elif owner == FEED:
                if name == (ATOM_NS, "name"):
                    self.feed.author = self.feed.author or text.strip()
                elif name == (ATOM_NS, "uri"):
                    self.feed.author_uri = self.feed.author_uri or text.strip()
        elif parent == FEED:
            if name == (ATOM_NS, "id"):
                self.feed.feed_id = text.strip()
            elif name == (ATOM_NS, "title"):
                self.feed.title = text.strip()

    def endDocument(self):
        # Feed-level author may follow the entries.
        for entry in self.feed.entries:
            if not entry.author:
                entry.author = self.feed.author
                entry.author_uri = entry.author_uri or self.feed.author_uri

    def parent(self):
        return self.stack[-1][0] if self.stack else None

    def finish_entry(self, fields):
        entry_id = fields.get("id", "").strip()
        if not entry_id:
            raise MalformedDocument("entry has no id")
        stamp = fields.get("published") or fields.get("updated")
        if not stamp:
            raise MalformedDocument(f"{entry_id}: entry has no published or updated date")
        text = fields["content"] if "content" in fields else fields.get("title", "")
        return AtomEntry(
            entry_id=entry_id,
            text=text,
            author=fields.get("author_name", ""),
            published=parse_atom_datetime(stamp.strip(), entry_id),
            author_uri=fields.get("author_uri", ""),
        )


def parse_atom_datetime(s, entry_id=None):
    """Parse an RFC 3339 date-time, assuming UTC if no offset is given."""
    try:
        d = parse_datetime(s)
    except ValueError:
        d = None
    if d is None:
        raise MalformedDocument(f"{entry_id}: cannot understand date {s!r}")
    if timezone.is_naive(d):
        d = timezone.make_aware(d, dt_timezone.utc)
    return d


def parse_feed(data):
    """Parse an Atom document and return an AtomFeed.

    Arguments --
        data -- bytes (or str) of the document

    Raises MalformedDocument if it cannot be parsed or an entry lacks its ID or date.
    """
    if isinstance(data, str):
        data = data.encode("UTF-8")
    handler = AtomHandler()
    parser = make_parser()
    parser.setFeature(feature_namespaces, True)
    parser.setFeature(feature_external_ges, False)
    parser.setFeature(feature_external_pes, False)
    parser.setContentHandler(handler)
    try:
        parser.parse(io.BytesIO(data))
    except SAXException as e:
        raise MalformedDocument(str(e)) from e
    return handler.feed


def parse(data):
    """Return the entries in this Atom document, in document order."""
    return parse_feed(data).entries
