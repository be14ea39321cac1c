import unittest

from grinder.resolve.titles import (
    normalize_title_for_search,
    normalize_title_key,
    slug_title_key,
    title_matches,
)


class TestTitles(unittest.TestCase):
    def test_outlet_suffix_is_removed(self):
        self.assertEqual(
            normalize_title_for_search("Ceasefire talks resume in Cairo - Reuters"),
            "Ceasefire talks resume in Cairo",
        )
        self.assertEqual(
            normalize_title_for_search("Ceasefire talks resume in Cairo | BBC News"),
            "Ceasefire talks resume in Cairo",
        )

    def test_short_headline_keeps_its_suffix(self):
        self.assertEqual(normalize_title_for_search("Mid-East - Reuters"), "Mid-East - Reuters")

    def test_title_key_drops_stopwords_and_duplicates(self):
        self.assertEqual(
            normalize_title_key("The Fed raises rates, says inflation is sticky as rates climb"),
            "fed raises rates inflation sticky climb",
        )

    def test_short_target_needs_every_token(self):
        self.assertTrue(title_matches("fed rates", "fed raises rates"))
        self.assertFalse(title_matches("fed rates", "fed cuts"))

    def test_long_target_needs_overlap(self):
        target = normalize_title_key("Ceasefire talks resume in Cairo as mediators push deal")
        self.assertTrue(title_matches(target, normalize_title_key("Ceasefire talks resume in Cairo")))
        self.assertFalse(title_matches(target, normalize_title_key("Stock markets rally on earnings")))
        self.assertFalse(title_matches("", target))

    def test_slug_key(self):
        self.assertEqual(
            slug_title_key("https://apnews.com/article/ceasefire-talks-resume-in-cairo"),
            "ceasefire talks resume cairo",
        )
        self.assertEqual(slug_title_key("https://apnews.com/"), "")


if __name__ == "__main__":
    unittest.main()
