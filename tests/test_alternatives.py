import unittest

from grinder.events.event_types import Candidate, Event
from grinder.resolve.alternatives import (
    AlternativeResolver,
    needs_decode,
    parse_candidates,
    parse_date,
    rank_candidates,
    should_external_search,
    within_date_window,
)

GN = "https://news.google.com/rss/articles/CBMiExample"


def _event(**kwargs) -> Event:
    defaults = dict(
        id="42",
        title_en="Ceasefire talks resume in Cairo as mediators push deal",
        source="Reuters",
        url="https://www.reuters.com/world/ceasefire-talks-resume-in-cairo",
        date="2024-05-01T08:00:00Z",
    )
    defaults.update(kwargs)
    return Event(**defaults)


class TestRanking(unittest.TestCase):
    def test_level_desc_then_rank_asc_with_missing_rank_last(self):
        items = [
            Candidate(source="a", url="https://a.example/1", level=1, rank=2),
            Candidate(source="b", url="https://b.example/1", level=3, rank=None),
            Candidate(source="c", url="https://c.example/1", level=1, rank=1),
        ]
        ranked = rank_candidates(items)
        self.assertEqual([c.source for c in ranked], ["b", "c", "a"])

    def test_direct_url_beats_aggregator_link_at_same_level(self):
        items = [
            Candidate(source="gn-only", gn_url=GN, level=2, rank=1),
            Candidate(source="direct", url="https://x.example/1", level=2, rank=5),
        ]
        self.assertEqual([c.source for c in rank_candidates(items)], ["direct", "gn-only"])


class TestClassify(unittest.TestCase):
    def setUp(self):
        self.resolver = AlternativeResolver(min_level=1, date_window_days=3)

    def test_duplicate_outlet_and_title_is_rejected(self):
        event = _event()
        event.candidates = [
            Candidate(source="AP News", url="https://apnews.com/article/ceasefire-1", title_en="Ceasefire talks resume",
                      origin="gn", rank=1),
            Candidate(source="AP News", url="https://apnews.com/article/ceasefire-2", title_en="Ceasefire talks resume",
                      origin="gn", rank=2),
        ]
        result = self.resolver.classify(event)
        self.assertEqual([c.url for c in result.accepted], ["https://apnews.com/article/ceasefire-1"])
        self.assertEqual([c.reason for c in result.rejected], ["duplicate"])

    def test_row_store_entries_are_never_fallbacks(self):
        event = _event()
        event.candidates = [Candidate(source="BBC", url="https://www.bbc.com/news/world-1", origin="sheet")]
        result = self.resolver.classify(event)
        self.assertEqual(result.accepted, [])
        self.assertEqual(result.rejected[0].reason, "sheet_origin")

    def test_rejection_reasons(self):
        event = _event()
        event.candidates = [
            Candidate(source="", url="https://www.bbc.com/news/world-1", origin="gn"),
            Candidate(source="Some Blog", url="https://someblog.example/post", origin="gn"),
            Candidate(source="CNN", url="https://edition.cnn.com/old", origin="gn", date="2024-03-01"),
            Candidate(source="Reuters", url="https://www.reuters.com/world/ceasefire-talks-resume-in-cairo",
                      origin="gn"),
        ]
        reasons = [c.reason for c in self.resolver.classify(event).rejected]
        self.assertEqual(
            reasons,
            ["missing_link_or_source", "below_min_agency", "date_out_of_range", "same_source_same_link"],
        )

    def test_accepted_candidates_are_ranked(self):
        event = _event()
        event.candidates = [
            Candidate(source="Forbes", url="https://www.forbes.com/a", origin="gn", rank=1),
            Candidate(source="BBC", url="https://www.bbc.com/news/b", origin="gn", rank=4),
            Candidate(source="CNN", url="https://edition.cnn.com/c", origin="gn", rank=2),
        ]
        accepted = self.resolver.classify(event).accepted
        self.assertEqual([c.source for c in accepted], ["BBC", "CNN", "Forbes"])
        self.assertEqual([c.level for c in accepted], [3, 2, 1])

    def test_classify_never_mutates_input(self):
        event = _event()
        raw = Candidate(source="BBC", url=" https://www.bbc.com/news/b ", origin="gn")
        event.candidates = [raw]
        self.resolver.classify(event)
        self.assertEqual(raw.level, 0)
        self.assertEqual(raw.url, " https://www.bbc.com/news/b ")


class TestMerge(unittest.TestCase):
    def test_only_matching_headlines_are_added_once(self):
        resolver = AlternativeResolver()
        event = _event()
        items = [
            Candidate(source="BBC", url="https://www.bbc.com/news/cairo", title_en="Ceasefire talks resume in Cairo - BBC",
                      origin="gn"),
            Candidate(source="BBC", url="https://www.bbc.com/news/cairo", title_en="Ceasefire talks resume in Cairo",
                      origin="gn"),
            Candidate(source="CNBC", url="https://www.cnbc.com/markets", title_en="Stock markets rally on earnings",
                      origin="gn"),
        ]
        self.assertEqual(resolver.merge(event, items), 1)
        self.assertEqual([c.source for c in event.candidates], ["BBC"])


class TestHelpers(unittest.TestCase):
    def test_needs_decode(self):
        self.assertTrue(needs_decode(Candidate(source="x", gn_url=GN)))
        self.assertFalse(needs_decode(Candidate(source="x", gn_url=GN, url="https://x.example/a")))
        self.assertFalse(needs_decode(Candidate(source="x", gn_url="https://x.example/a")))

    def test_should_external_search(self):
        self.assertTrue(should_external_search([]))
        self.assertTrue(should_external_search([Candidate(source="x", gn_url=GN)]))
        self.assertFalse(should_external_search([Candidate(source="x", url="https://x.example/a")]))

    def test_parse_candidates(self):
        pool = parse_candidates('[{"source": "Reuters", "url": "https://reuters.com/a", "rank": "2"}, 5]')
        self.assertEqual(len(pool), 1)
        self.assertEqual(pool[0].rank, 2.0)
        self.assertEqual(parse_candidates("not json"), [])
        self.assertEqual(parse_candidates(None), [])

    def test_unknown_dates_never_exclude(self):
        self.assertTrue(within_date_window(None, parse_date("2020-01-01"), 3))
        self.assertTrue(within_date_window(parse_date("2024-05-01"), parse_date("2024-05-03"), 3))
        self.assertFalse(within_date_window(parse_date("2024-05-01"), parse_date("2024-05-10"), 3))
        self.assertEqual(parse_date("Wed, 01 May 2024 10:00:00 GMT").day, 1)


if __name__ == "__main__":
    unittest.main()
