"""Tests for URL normalization, similarity and batch-local deduplication."""

from __future__ import annotations

from feed_crawler.core.dedup import (
    BatchDeduplicator,
    are_near_duplicates,
    are_titles_similar,
    content_fingerprint,
    dedup_by_title,
    dedup_by_url,
    dedup_near_duplicates,
    extract_canonical_url,
    generate_content_hash,
    id_from_url,
    is_fingerprintable,
    normalize_url,
    text_similarity,
)


def test_normalize_url_strips_tracking_params_and_fragment():
    assert normalize_url("https://a.com/x?utm_source=y&ref=z#frag") == "https://a.com/x"


def test_normalize_url_keeps_other_params_in_order():
    url = "https://a.com/p?b=2&utm_medium=mail&a=1&fbclid=abc&UTM_Custom=q"
    assert normalize_url(url) == "https://a.com/p?b=2&a=1"


def test_normalize_url_returns_unparseable_input_unchanged():
    assert normalize_url("not a url") == "not a url"
    assert normalize_url("/relative/path?utm_source=x") == "/relative/path?utm_source=x"


def test_content_hash_ignores_tracking_and_title_whitespace():
    first = generate_content_hash("https://a.com/x?utm_source=y", "Hello   World")
    second = generate_content_hash("https://a.com/x", " hello world ")
    assert first == second
    assert len(first) == 64


def test_id_from_url_is_stable_over_tracking_params():
    assert id_from_url("https://a.com/x?gclid=1") == id_from_url("https://a.com/x")
    assert len(id_from_url("https://a.com/x")) == 16


def test_text_similarity_uses_words_longer_than_three_chars():
    # "the" and "of" are ignored on both sides
    assert text_similarity("the release of python", "python release") == 1.0
    assert text_similarity("a b c", "a b c") == 0.0


def test_title_similarity_threshold_is_inclusive():
    # 7 shared of 10 distinct significant words
    shared = "alpha bravo charlie delta echo foxtrot golf"
    title_a = f"{shared} hotel"
    title_b = f"{shared} india juliet"
    assert text_similarity(title_a, title_b) == 0.7
    assert are_titles_similar(title_a, title_b)
    assert not are_titles_similar(title_a, title_b, threshold=0.71)


def test_fuzzy_title_method():
    assert are_titles_similar("OpenAI releases GPT-5", "OpenAI release GPT-5", 0.9, "fuzzy")
    assert not are_titles_similar("OpenAI releases GPT-5", "Weather today", 0.9, "fuzzy")


def test_content_fingerprint_ignores_case_and_punctuation():
    text = "The quick brown fox jumps over the lazy dog. " * 10
    assert content_fingerprint(text) == content_fingerprint(text.upper().replace(".", "!"))
    assert content_fingerprint(text) != content_fingerprint("Something else entirely here")
    assert len(content_fingerprint(text)) == 16


def test_extract_canonical_url_resolves_relative_href():
    html = '<html><head><link rel="canonical" href="/post/1"></head></html>'
    assert extract_canonical_url(html, "https://a.com/x?y=1") == "https://a.com/post/1"
    assert extract_canonical_url("<html></html>", "https://a.com") is None


def test_list_dedup_helpers_keep_first_occurrence():
    story = "Central banks held rates steady this week while markets priced in two cuts before the end of the year and bond yields fell across most maturities"
    items = [
        {"url": "https://a.com/1?utm_source=x", "title": "Python 3.13 release notes published", "body": story},
        {"url": "https://a.com/1", "title": "Unrelated", "body": "other"},
        {"url": "https://a.com/2", "title": "Python 3.13 release notes published today", "body": story.upper()},
    ]
    assert [i["title"] for i in dedup_by_url(items, lambda i: i["url"])] == [
        "Python 3.13 release notes published",
        "Python 3.13 release notes published today",
    ]
    assert len(dedup_by_title(items, lambda i: i["title"])) == 2
    assert len(dedup_near_duplicates(items, lambda i: i["body"])) == 2


def test_batch_deduplicator_same_normalized_url_is_duplicate():
    dedup = BatchDeduplicator()
    assert dedup.claim_url("https://a.com/x?utm_source=rss", "First title here") is None
    assert dedup.claim_url("https://a.com/x#comments", "Completely different words") == "duplicate_url"
    assert dedup.seen_urls == 1


def test_batch_deduplicator_similar_titles_are_duplicates():
    dedup = BatchDeduplicator()
    shared = "alpha bravo charlie delta echo foxtrot golf"
    assert dedup.claim_url("https://a.com/1", f"{shared} hotel") is None
    assert dedup.claim_url("https://b.com/2", f"{shared} india juliet") == "duplicate_title"
    assert dedup.claim_url("https://c.com/3", "nothing matching whatsoever") is None


def test_batch_deduplicator_near_duplicates_can_be_disabled():
    dedup = BatchDeduplicator(near_duplicates=False)
    assert dedup.claim_url("https://a.com/1", "Same exact title words") is None
    assert dedup.claim_url("https://b.com/2", "Same exact title words") is None
    assert dedup.claim_content("body text of the article") is None
    assert dedup.claim_content("body text of the article") is None


def test_batch_deduplicator_content_fingerprints():
    dedup = BatchDeduplicator()
    assert dedup.claim_content("") is None
    story = (
        "A syndicated story about markets and rates. Central banks held steady this week "
        "while traders priced in two cuts before the end of the year."
    )
    assert dedup.claim_content(story) is None
    assert dedup.claim_content(story.lower().replace(".", ",")) == "duplicate_content"


def test_short_bodies_are_never_content_duplicates():
    dedup = BatchDeduplicator()
    assert not is_fingerprintable("Comments")
    assert content_fingerprint("Comments") == content_fingerprint("Read more")
    assert dedup.claim_content("Comments") is None
    assert dedup.claim_content("Read more") is None
    assert dedup.claim_content("Comments") is None
    assert not are_near_duplicates("Comments", "Comments")
    assert len(dedup_near_duplicates(["Comments", "Read more", "Comments"], lambda body: body)) == 3
