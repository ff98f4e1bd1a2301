import unittest

from domain.entity_resolver import (
    EntityResolver,
    ResolutionQuery,
    build_creation_proposal,
    next_product_id,
    resolve_text,
)
from domain.label_models import (
    Ambiguous,
    BestGuess,
    Exact,
    Fuzzy,
    ResolutionThresholds,
    Unresolved,
    build_catalog,
    resolved_entry,
)
from domain.structured_code import decode_structured_payload


CATALOG = [
    {"id": "PROD-00001", "name": "Organic Apples"},
    {"id": "PROD-00002", "name": "Organic Pears"},
    {"id": "PROD-00007", "name": "Greek Yogurt Natural"},
]


class EntityResolverTestCase(unittest.TestCase):
    def test_exact_code_match(self):
        result = resolve_text(
            "PROD-00007 Organic Apples EXP 2026-03-15",
            [{"id": "PROD-00007", "name": "Organic Apples"}],
        )

        self.assertIsInstance(result, Exact)
        self.assertEqual(result.entry.id, "PROD-00007")

    def test_exact_match_dominates_fuzzy_scores(self):
        result = resolve_text("prod-00002 Organic Apples", CATALOG)

        self.assertIsInstance(result, Exact)
        self.assertEqual(result.entry.id, "PROD-00002")

    def test_exact_match_on_labelled_batch_code(self):
        result = resolve_text("BATCH: PLT-0B1 Fresh", [{"id": "plt-0b1", "name": "Pallet"}])

        self.assertIsInstance(result, Exact)

    def test_ambiguous_when_single_word_matches_several_entries(self):
        result = resolve_text("Organic", [
            {"id": "X", "name": "Organic X"},
            {"id": "Y", "name": "Organic Y"},
        ])

        self.assertIsInstance(result, Ambiguous)
        self.assertEqual([c.entry.id for c in result.candidates], ["X", "Y"])
        self.assertEqual([c.score for c in result.candidates], [1, 1])

    def test_unique_candidate_above_minimum_is_fuzzy(self):
        result = resolve_text("Fresh Organic Apples 500g", CATALOG)

        self.assertIsInstance(result, Fuzzy)
        self.assertEqual(result.entry.id, "PROD-00001")
        self.assertEqual(result.score, 2)

    def test_equal_top_scores_are_never_picked(self):
        catalog = [
            {"id": "A", "name": "Organic Apples Gala"},
            {"id": "B", "name": "Organic Apples Fuji"},
        ]
        result = resolve_text("Organic Apples", catalog)

        self.assertIsInstance(result, Ambiguous)

    def test_gap_rule_selects_clear_winner(self):
        catalog = [
            {"id": "A", "name": "Organic Apples Fresh Crunchy"},
            {"id": "B", "name": "Organic Apples"},
        ]
        result = resolve_text("Organic Apples Fresh Crunchy", catalog)

        self.assertIsInstance(result, Fuzzy)
        self.assertEqual(result.entry.id, "A")
        self.assertEqual(result.score, 4)

    def test_gap_rule_needs_high_enough_top_score(self):
        thresholds = ResolutionThresholds(min_unique_score=1, min_gap=1, min_gap_top_score=3)
        result = resolve_text("Organic Apples", CATALOG, thresholds=thresholds)

        self.assertIsInstance(result, Ambiguous)

        thresholds = ResolutionThresholds(min_unique_score=1, min_gap=1, min_gap_top_score=2)
        result = resolve_text("Organic Apples", CATALOG, thresholds=thresholds)

        self.assertIsInstance(result, Fuzzy)
        self.assertEqual(result.entry.id, "PROD-00001")

    def test_unresolved_keeps_best_guess(self):
        result = resolve_text("Blue Cheese BATCH: BC-2201 EXP 01/02/2027", CATALOG)

        self.assertIsInstance(result, Unresolved)
        self.assertEqual(result.best_guess.name_guess, "Blue Cheese")
        self.assertEqual(result.best_guess.batch_code, "BC-2201")
        self.assertEqual(result.best_guess.expiry_date_iso, "2027-02-01")
        self.assertEqual(result.best_guess.expiry_date_display, "01/02/2027")

    def test_strict_mode_skips_fuzzy_matching(self):
        result = resolve_text("Fresh Organic Apples", CATALOG, strict=True)

        self.assertIsInstance(result, Unresolved)
        self.assertIsNone(resolved_entry(result))

    def test_resolution_is_deterministic(self):
        text = "Organic fruit EXP 15/03/2026"
        first = resolve_text(text, CATALOG)
        second = resolve_text(text, CATALOG)

        self.assertEqual(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_thresholds_are_overridable(self):
        lenient = ResolutionThresholds(min_unique_score=1)
        result = resolve_text("Yogurt", CATALOG, thresholds=lenient)

        self.assertIsInstance(result, Fuzzy)
        self.assertEqual(result.entry.id, "PROD-00007")

    def test_structured_query_matches_code_then_name(self):
        resolver = EntityResolver()
        catalog = build_catalog(CATALOG)

        by_code = resolver.resolve(ResolutionQuery.from_structured(decode_structured_payload("PRODUCT:PROD-00002")), catalog)
        by_name = resolver.resolve(
            ResolutionQuery.from_structured(decode_structured_payload('{"name": "Greek Yogurt"}')),
            catalog,
        )

        self.assertIsInstance(by_code, Exact)
        self.assertEqual(by_code.entry.id, "PROD-00002")
        self.assertIsInstance(by_name, Fuzzy)
        self.assertEqual(by_name.entry.id, "PROD-00007")


class CreationProposalTestCase(unittest.TestCase):
    def test_next_product_id_follows_highest_sequence(self):
        catalog = build_catalog(CATALOG + [{"id": "CUSTOM-99", "name": "Other"}])

        self.assertEqual(next_product_id(catalog), "PROD-00008")
        self.assertEqual(next_product_id([]), "PROD-00001")

    def test_proposal_from_best_guess(self):
        proposal = build_creation_proposal(
            BestGuess(name_guess="Blue Cheese", expiry_date_iso="2027-02-01"),
            build_catalog(CATALOG),
        )

        self.assertEqual(proposal.suggested_id, "PROD-00008")
        self.assertEqual(proposal.suggested_name, "Blue Cheese")
        self.assertEqual(proposal.suggested_expiry, "2027-02-01")

    def test_proposal_reuses_unknown_structured_id(self):
        structured = decode_structured_payload('{"id":"PROD-00010","batch":"B123","expiry":"2026-01-01"}')
        proposal = build_creation_proposal(
            ResolutionQuery.from_structured(structured).best_guess,
            build_catalog(CATALOG),
            structured,
        )

        self.assertEqual(proposal.suggested_id, "PROD-00010")
        self.assertEqual(proposal.suggested_name, "8123")
        self.assertEqual(proposal.suggested_expiry, "2026-01-01")

    def test_no_proposal_without_any_name(self):
        self.assertIsNone(build_creation_proposal(BestGuess(expiry_date_iso="2027-02-01"), []))
