"""
Unit tests for batch classification.
"""

from inbox_triage.classification.batch import BatchClassifier, BatchItem
from inbox_triage.classification.schemas import ClassificationResult, ItemStatus


class TestBatchClassifier:

    def test_all_items_classified(self, make_item, make_engine, payload, load_item):
        items = [make_item(content=f"Task {n}", status="processing") for n in range(4)]
        batch = BatchClassifier(make_engine(payload(confidence=0.9)), concurrency=2)

        result = batch.classify_batch([BatchItem(i.id, i.content) for i in items])

        assert result.succeeded == 4
        assert result.failed == 0
        assert all(isinstance(r, ClassificationResult) for r in result.results.values())
        assert all(load_item(i.id).status == ItemStatus.REVIEWED.value for i in items)

    def test_failures_reported_per_item(self, make_item, failing_engine, load_item):
        items = [make_item(status="processing") for _ in range(2)]

        result = BatchClassifier(failing_engine, concurrency=2).classify_batch(
            [BatchItem(i.id, i.content) for i in items]
        )

        assert result.succeeded == 0
        assert result.failed == 2
        assert all("Request timed out" in r for r in result.results.values())
        assert all(load_item(i.id).status == ItemStatus.ERROR.value for i in items)

    def test_mixed_outcomes(self, make_item, make_engine, payload):
        ok = make_item(status="processing")
        bad = make_item(status="error")

        result = BatchClassifier(make_engine(payload()), concurrency=1).classify_batch(
            [BatchItem(ok.id, ok.content), BatchItem(bad.id, bad.content)]
        )

        assert result.succeeded == 1
        assert result.failed == 1
        assert isinstance(result.results[bad.id], str)

    def test_empty_batch(self, make_engine):
        result = BatchClassifier(make_engine()).classify_batch([])

        assert result.succeeded == 0
        assert result.results == {}

    def test_default_concurrency(self, make_engine):
        assert BatchClassifier(make_engine()).concurrency == 5

    def test_classify_items_reports_unknown_ids(self, make_item, make_engine):
        item = make_item(status="pending")

        result = BatchClassifier(make_engine(), concurrency=1).classify_items([item.id, "missing-id"])

        assert result.succeeded == 1
        assert result.failed == 1
        assert "not found" in result.results["missing-id"]
