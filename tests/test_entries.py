import time
from datetime import datetime, timedelta, timezone

import feedparser
import pytest

from dates import parse_timestamp
from entries import (
    UNTITLED,
    extract_description,
    extract_fields,
    extract_image_url,
    extract_pub_date,
    unwrap_text,
)


@pytest.mark.parametrize("value, expected", [
    ("  plain  ", "plain"),
    ("", None),
    (None, None),
    (["", "  ", "second"], "second"),
    ([], None),
    ({"_": "xml2js text", "$": {"isPermaLink": "false"}}, "xml2js text"),
    ({"#text": "hash text"}, "hash text"),
    ({"value": "feedparser value"}, "feedparser value"),
    ({"href": "https://example.com/a"}, "https://example.com/a"),
    ({"unrelated": "x"}, None),
    ([{"_": ""}, {"value": "nested"}], "nested"),
    (42, "42"),
])
def test_unwrap_text_shapes(value, expected):
    assert unwrap_text(value) == expected


def test_guid_prefers_explicit_guid_then_link_then_title():
    assert extract_fields({"guid": "g-1", "link": "https://e.com/1", "title": "T"}).guid == "g-1"
    assert extract_fields({"id": "tag:e.com,2026:1", "link": "https://e.com/1"}).guid == "tag:e.com,2026:1"
    assert extract_fields({"link": "https://e.com/1", "title": "T"}).guid == "https://e.com/1"
    assert extract_fields({"title": "Only a title"}).guid == "Only a title"
    assert extract_fields({"guid": {"_": "wrapped", "$": {"isPermaLink": "false"}}}).guid == "wrapped"


def test_entry_without_any_key_is_rejected():
    with pytest.raises(ValueError):
        extract_fields({"description": "no identity at all"})


def test_missing_title_uses_placeholder_for_display_only():
    fields = extract_fields({"link": "https://e.com/1"})
    assert fields.title is None
    assert fields.display_title == UNTITLED


def test_image_from_image_enclosure():
    entry = {
        "enclosure": {"url": "https://e.com/pic.jpg", "type": "image/jpeg"},
        "media_content": [{"url": "https://e.com/media.jpg"}],
    }
    assert extract_image_url(entry) == "https://e.com/pic.jpg"


def test_image_skips_non_image_enclosures():
    entry = {
        "enclosures": [{"href": "https://e.com/episode.mp3", "type": "audio/mpeg"}],
        "media_content": [{"url": "https://e.com/media.jpg"}],
    }
    assert extract_image_url(entry) == "https://e.com/media.jpg"


def test_image_from_feedparser_enclosure_link():
    entry = feedparser.FeedParserDict({
        "links": [
            {"rel": "alternate", "href": "https://e.com/post"},
            {"rel": "enclosure", "href": "https://e.com/cover.png", "type": "image/png"},
        ],
    })
    assert extract_image_url(entry) == "https://e.com/cover.png"


def test_image_from_xml2js_style_enclosure():
    entry = {"enclosure": {"$": {"url": "https://e.com/x.webp", "type": "image/webp"}}}
    assert extract_image_url(entry) == "https://e.com/x.webp"


def test_image_from_media_thumbnail():
    entry = {"media:thumbnail": {"$": {"url": "https://e.com/thumb.jpg"}}}
    assert extract_image_url(entry) == "https://e.com/thumb.jpg"


def test_image_from_inline_html():
    entry = {"content": [{"value": '<p>Intro</p><img alt="x" src="https://e.com/inline.gif">'}]}
    assert extract_image_url(entry) == "https://e.com/inline.gif"


def test_no_image_is_not_an_error():
    assert extract_image_url({"summary": "<p>No pictures here</p>"}) is None


def test_pub_date_prefers_published_over_updated():
    entry = {"pubDate": "Tue, 13 Jan 2026 19:33:16 CET", "updated": "2026-01-20T00:00:00Z"}
    assert extract_pub_date(entry) == "2026-01-13T18:33:16.000Z"


def test_pub_date_falls_back_to_updated_spellings():
    assert extract_pub_date({"updated": "2026-01-10T08:00:00Z"}) == "2026-01-10T08:00:00.000Z"
    assert extract_pub_date({"atom:updated": "2026-01-10T08:00:00Z"}) == "2026-01-10T08:00:00.000Z"


def test_unparseable_published_falls_through_to_updated():
    entry = {"published": "sometime last week", "updated": "2026-01-10T08:00:00Z"}
    assert extract_pub_date(entry) == "2026-01-10T08:00:00.000Z"


def test_pub_date_from_feedparser_struct():
    entry = {"published_parsed": time.struct_time((2026, 1, 13, 18, 33, 16, 1, 13, 0))}
    assert extract_pub_date(entry) == "2026-01-13T18:33:16.000Z"


def test_missing_dates_default_to_now_and_are_flagged():
    fields = extract_fields({"guid": "g-1", "title": "No date"})
    assert fields.date_is_fallback is True
    delta = abs(datetime.now(timezone.utc) - parse_timestamp(fields.pub_date))
    assert delta < timedelta(seconds=5)

    dated = extract_fields({"guid": "g-2", "isoDate": "2026-01-13T19:33:16.000Z"})
    assert dated.date_is_fallback is False


def test_description_prefers_snippet_and_strips_markup():
    assert extract_description({"contentSnippet": "Snippet", "description": "<p>Desc</p>"}) == "Snippet"
    assert extract_description({"description": "<p>Hello <b>world</b></p>\n\n"}) == "Hello world"
    assert extract_description({}) == ""
