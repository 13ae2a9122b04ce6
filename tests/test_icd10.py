import json
import os
import tempfile
import unittest

from medbill import icd10


class TestFallbackCodes(unittest.TestCase):
    def setUp(self):
        os.environ.pop(icd10.ENV_KEYWORDS_PATH, None)
        icd10.reset_keyword_cache()

    def tearDown(self):
        icd10.reset_keyword_cache()

    def _codes(self, notes):
        return [c.code for c in icd10.fallback_codes(notes)]

    def test_fever_only(self):
        self.assertEqual(self._codes("Patient presents with fever since yesterday"), ["R50.9"])

    def test_order_follows_rule_table(self):
        # "fever" appears before "cough" in the notes but J06.9 comes first in the table
        self.assertEqual(self._codes("Fever and a dry cough"), ["J06.9", "R50.9"])

    def test_duplicate_codes_collapsed(self):
        self.assertEqual(self._codes("Cough, cold, upper respiratory symptoms"), ["J06.9"])

    def test_multi_word_keyword(self):
        self.assertEqual(self._codes("Elevated blood pressure on two visits"), ["I10"])

    def test_inflected_words_match(self):
        self.assertEqual(
            self._codes("Patient has fevers, persistent coughing and headaches"),
            ["J06.9", "R50.9", "R51"],
        )

    def test_keyword_inside_longer_word(self):
        self.assertEqual(self._codes("Painful swelling of the ankle"), ["R52"])

    def test_nothing_matched_is_unspecified(self):
        codes = icd10.fallback_codes("Routine follow-up, no complaints")
        self.assertEqual([c.code for c in codes], ["R69"])
        self.assertEqual(codes[0].label, "Illness, unspecified")

    def test_empty_notes(self):
        self.assertEqual(self._codes(""), ["R69"])

    def test_labels_attached(self):
        codes = icd10.fallback_codes("hypertension and diabetes, headache")
        self.assertEqual([c.code for c in codes], ["I10", "E11.9", "R51"])
        self.assertEqual(codes[0].label, "Essential (primary) hypertension")


class TestKeywordFile(unittest.TestCase):
    def setUp(self):
        icd10.reset_keyword_cache()

    def tearDown(self):
        os.environ.pop(icd10.ENV_KEYWORDS_PATH, None)
        icd10.reset_keyword_cache()

    def test_rules_from_env_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "keywords.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"sore throat": ["J02.9"], "bogus": ["not-a-code"]}, f)
            os.environ[icd10.ENV_KEYWORDS_PATH] = path
            rules = icd10.load_keyword_rules(force=True)
            self.assertEqual(rules, [("sore throat", "J02.9")])
            self.assertEqual([c.code for c in icd10.fallback_codes("Sore throat x3 days")], ["J02.9"])

    def test_list_format(self):
        rules = icd10._rules_from_json([{"keyword": "Asthma", "codes": "J45.909|J45.9"}, "junk"])
        self.assertEqual(rules, [("asthma", "J45.9")])

    def test_unreadable_file_uses_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "broken.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            rules = icd10.load_keyword_rules(path_override=path, force=True)
            self.assertEqual(rules, icd10.DEFAULT_KEYWORD_RULES)


class TestFallbackMedications(unittest.TestCase):
    def test_respiratory_meds(self):
        meds = icd10.fallback_medications("Persistent cough for a week")
        self.assertEqual(
            [m.name for m in meds],
            ["Acetaminophen 500mg", "Dextromethorphan 15mg", "Guaifenesin 400mg"],
        )
        self.assertTrue(all(m.cost > 0 for m in meds))

    def test_bacterial_infection_needs_both_words(self):
        self.assertEqual(icd10.fallback_medications("Infection of unclear origin"), [])
        names = [m.name for m in icd10.fallback_medications("Suspected bacterial infection")]
        self.assertEqual(names, ["Amoxicillin 500mg"])

    def test_no_match_is_empty(self):
        self.assertEqual(icd10.fallback_medications("Routine checkup"), [])


if __name__ == "__main__":
    unittest.main()
