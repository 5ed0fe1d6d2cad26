import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import pytest

from job_discovery.engines.sources.feed_parser import parse_date, parse_feed

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Remote Jobs</title>
    <link>https://remoteok.test</link>
    <description>Latest remote jobs</description>
    <item>
      <title>Acme: Senior Backend Engineer</title>
      <link>https://remoteok.test/remote-jobs/1</link>
      <guid>rss-1</guid>
      <description><![CDATA[<p>Python and Postgres</p>]]></description>
      <content:encoded><![CDATA[<p>Full body</p>]]></content:encoded>
      <dc:creator>Acme Hiring</dc:creator>
      <pubDate>Mon, 06 May 2024 10:00:00 +0000</pubDate>
      <category>python</category>
      <category>backend</category>
    </item>
    <item>
      <title>Globex: Designer</title>
      <link>https://remoteok.test/remote-jobs/2</link>
    </item>
    <item>
      <description>No title or link</description>
    </item>
  </channel>
</rss>
"""

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Job Feed</title>
  <subtitle>Atom jobs</subtitle>
  <link href="https://jobs.test/"/>
  <entry>
    <title>Platform Engineer</title>
    <link href="https://jobs.test/42"/>
    <id>urn:job:42</id>
    <summary>Kubernetes everywhere</summary>
    <author><name>Initech</name></author>
    <published>2024-05-01T08:30:00Z</published>
    <category term="devops"/>
  </entry>
</feed>
"""


def test_parse_rss():
    feed = parse_feed(RSS)

    assert feed.title == "Remote Jobs"
    assert feed.link == "https://remoteok.test"
    assert feed.description == "Latest remote jobs"
    assert len(feed.items) == 2

    item = feed.items[0]
    assert item.title == "Acme: Senior Backend Engineer"
    assert item.link == "https://remoteok.test/remote-jobs/1"
    assert item.guid == "rss-1"
    assert item.description == "<p>Python and Postgres</p>"
    assert item.content == "<p>Full body</p>"
    assert item.author == "Acme Hiring"
    assert item.published == datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc)
    assert item.categories == ["python", "backend"]

    assert feed.items[1].guid is None
    assert feed.items[1].published is None


def test_parse_atom():
    feed = parse_feed(ATOM)

    assert feed.title == "Job Feed"
    assert feed.link == "https://jobs.test/"
    assert feed.description == "Atom jobs"

    [entry] = feed.items
    assert entry.title == "Platform Engineer"
    assert entry.link == "https://jobs.test/42"
    assert entry.guid == "urn:job:42"
    assert entry.description == "Kubernetes everywhere"
    assert entry.author == "Initech"
    assert entry.published == datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
    assert entry.categories == ["devops"]


def test_malformed_feed_raises():
    with pytest.raises(ET.ParseError):
        parse_feed("<rss><channel><item></channel>")


def test_parse_date_variants():
    assert parse_date("2024-05-01") == datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert parse_date("2024-05-01T12:00:00+02:00").utcoffset().total_seconds() == 7200
    assert parse_date("not a date") is None
    assert parse_date(None) is None
    assert parse_date("") is None
