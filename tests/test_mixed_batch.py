import unittest

from domain.label_models import (
    AMBIGUITY_DUPLICATE,
    Ambiguous,
    CatalogEntry,
    Exact,
    Fuzzy,
    Unresolved,
)
from domain.label_pipeline import LabelResolutionEngine
from domain.mixed_batch import MixedBatchHandler
from domain.resolution_status import ResolutionIssue
from label_fakes import ScriptedRecognizer, blank_image


CATALOG = [
    {"id": "PROD-00001", "name": "Organic Apples"},
    {"id": "PROD-00002", "name": "Greek Yogurt"},
]
APPLES = CatalogEntry.from_record(CATALOG[0])


class CountingFactory:
    def __init__(self, recognizer=None):
        self.engines = []
        self._recognizer = recognizer

    def __call__(self):
        engine = LabelResolutionEngine(self._recognizer)
        self.engines.append(engine)
        return engine


class MixedBatchHandlerTestCase(unittest.TestCase):
    def test_second_pass_needed_only_with_other_products(self):
        primary = Exact(APPLES)

        self.assertTrue(MixedBatchHandler.requires_second_pass(primary, ["prod-00001", "PROD-00002"]))
        self.assertFalse(MixedBatchHandler.requires_second_pass(primary, ["PROD-00001", " ", None]))
        self.assertFalse(MixedBatchHandler.requires_second_pass(Unresolved(), ["PROD-00002"]))

    def test_secondary_pass_resolves_independently(self):
        factory = CountingFactory()
        handler = MixedBatchHandler(factory)

        context = handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG, text="PROD-00002 Greek Yogurt")

        self.assertEqual(context.pallet_id, "PLT-0001")
        self.assertIsInstance(context.secondary, Exact)
        self.assertEqual(context.secondary.entry.id, "PROD-00002")
        self.assertEqual(context.primary, Exact(APPLES))
        self.assertEqual(len(factory.engines), 1)

    def test_each_pass_uses_a_fresh_engine(self):
        factory = CountingFactory()
        handler = MixedBatchHandler(factory)

        handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG, text="Greek Yogurt")
        handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG, text="Greek Yogurt")

        self.assertEqual(len(factory.engines), 2)
        self.assertIsNot(factory.engines[0], factory.engines[1])

    def test_same_entity_on_second_label_is_ambiguous(self):
        handler = MixedBatchHandler(CountingFactory())

        context = handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG, text="Fresh Organic Apples")

        self.assertIsInstance(context.secondary, Ambiguous)
        self.assertEqual(context.secondary.reason, AMBIGUITY_DUPLICATE)
        self.assertEqual([c.entry.id for c in context.secondary.candidates], ["PROD-00001", "PROD-00001"])
        self.assertEqual([c.score for c in context.secondary.candidates], [None, 2])
        self.assertIn(ResolutionIssue.AMBIGUOUS_MATCH, context.secondary_details.issues)
        self.assertEqual(context.to_dict()["secondary"]["reason"], "duplicate_of_primary")

    def test_secondary_from_capture(self):
        recognizer = ScriptedRecognizer(("PROD-00002 Greek Yogurt", 90.0))
        handler = MixedBatchHandler(CountingFactory(recognizer))

        context = handler.resolve_secondary(Fuzzy(APPLES, 2), "PLT-0002", CATALOG, capture=blank_image())

        self.assertEqual(context.secondary.entry.id, "PROD-00002")
        self.assertEqual(recognizer.calls, 1)

    def test_invalid_arguments(self):
        handler = MixedBatchHandler(CountingFactory())

        with self.assertRaises(ValueError):
            handler.resolve_secondary(Exact(APPLES), " ", CATALOG, text="Greek Yogurt")
        with self.assertRaises(ValueError):
            handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG)
        with self.assertRaises(ValueError):
            handler.resolve_secondary(Exact(APPLES), "PLT-0001", CATALOG, text="x", qr_payload="PROD-00002")
