"""
Tests for bulk reconciliation and suggestion recreation.

Run: python3 test_reconciler.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from marginalia.diagnostics import RecordingDiagnostics
from marginalia.document import from_text
from marginalia.models import IssueKind
from marginalia.suggest.engine import SuggestionEngine
from marginalia.suggest.mapper import PositionMapper
from marginalia.suggest.matcher import ExternalSuggestion
from marginalia.suggest.reconciler import SuggestionReconciler

GATE = "We need a quick fix for the broken gate before winter."


def _gate_engine(**kwargs):
    engine = SuggestionEngine(GATE, **kwargs)
    engine.set_suggestions([{"id": "sug_gate", "original": "broken gate", "suggestion": "damaged gate"}])
    return engine


def test_scenario_d_recreates_missing_suggestion():
    engine = _gate_engine()
    result = engine.reconcile([{"original": "quick fix", "suggestion": "rapid fix"}])

    assert result.matched == []
    assert len(result.recreated) == 1
    recreated = result.recreated[0]
    assert recreated.original == "quick fix"
    assert recreated.replacement == "rapid fix"
    assert recreated.confidence == 0.8
    assert (recreated.source_start, recreated.source_end) == (10, 19)
    assert [s.id for s in result.orphaned] == ["sug_gate"]
    assert [i.kind for i in result.unmatched] == [IssueKind.MATCH_NOT_FOUND]
    assert result.errors == []

    # The recreated suggestion joined the live set; the orphan was kept
    live_ids = {s.id for s in engine.suggestions}
    assert live_ids == {"sug_gate", recreated.id}
    assert engine.state.doc.text_between(recreated.from_pos, recreated.to_pos) == "quick fix"
    print("PASS: Scenario D")


def test_same_item_is_matched():
    engine = _gate_engine()
    before = engine.state
    result = engine.reconcile([{"id": "sug_gate", "original": "broken gate", "suggestion": "damaged gate"}])
    assert len(result.matched) == 1
    assert result.matched[0].suggestion_id == "sug_gate"
    assert result.matched[0].strategy == "exact_id"
    assert result.recreated == [] and result.orphaned == []
    # Nothing to add, so no transition
    assert engine.state is before
    print("PASS: same item matched")


def test_missing_text_is_an_error():
    engine = _gate_engine()
    result = engine.reconcile([{"original": "purple elephant", "suggestion": "grey mouse"}])
    assert result.recreated == []
    assert len(result.unmatched) == 1
    [error] = result.errors
    assert error.kind == IssueKind.RECREATION_FAILURE
    assert error.index == 0
    assert "not found" in error.message
    print("PASS: missing text reported")


def test_invalid_payload_is_an_error():
    engine = _gate_engine()
    result = engine.reconcile([42, {"original": "quick fix", "suggestion": "rapid fix"}])
    assert len(result.errors) == 1
    assert result.errors[0].index == 0
    assert result.errors[0].message.startswith("Invalid suggestion payload")
    assert len(result.recreated) == 1
    print("PASS: invalid payload")


def test_missing_original_is_an_error():
    engine = _gate_engine()
    result = engine.reconcile([{"suggestion": "only a replacement"}])
    assert result.errors[0].message == "Missing original text"
    print("PASS: missing original")


def test_locate_ladder():
    reconciler = SuggestionReconciler()

    # Literal
    text = "We need a quick fix today."
    assert reconciler.locate(text, "quick fix") == (10, 19)

    # Normalized substring, mapped back onto the raw text
    text = "We need a Quick  fix today."
    start, end = reconciler.locate(text, "quick fix")
    assert text[start:end] == "Quick  fix"

    # Significant-word sequence across punctuation
    text = "The ancient, crumbling castle stood."
    start, end = reconciler.locate(text, "ancient crumbling castle")
    assert text[start:end] == "ancient, crumbling castle"

    # Sliding window for a short misspelt phrase
    text = "The grey cat sat."
    start, end = reconciler.locate(text, "the gray cat sat")
    assert text[start:end] == "The grey cat sat"

    assert reconciler.locate(text, "a dog barked") is None
    assert reconciler.locate(text, "   ") is None
    print("PASS: locate ladder")


def test_recreate_maps_to_tree_positions():
    doc = from_text("First block.\n\nThe ancient, crumbling castle stood.")
    mapper = PositionMapper(doc)
    reconciler = SuggestionReconciler()
    ext = ExternalSuggestion(None, "ancient crumbling castle", "old castle")

    suggestion, reason = reconciler.recreate(mapper, ext)
    assert reason == ""
    assert suggestion.original == "ancient, crumbling castle"
    assert doc.text_between(suggestion.from_pos, suggestion.to_pos) == "ancient, crumbling castle"
    assert suggestion.id.startswith("sug_")
    print("PASS: recreate")


def test_deletion_can_be_recreated():
    engine = SuggestionEngine(GATE)
    result = engine.reconcile([{"original": "before winter", "suggestion": ""}])
    [s] = result.recreated
    assert s.replacement == ""
    assert engine.accept_suggestion(s.id)
    assert engine.text == "We need a quick fix for the broken gate ."
    print("PASS: deletions recreated")


def test_report_and_stats():
    engine = _gate_engine()
    result = engine.reconcile(
        [
            {"original": "quick fix", "suggestion": "rapid fix"},
            {"original": "purple elephant", "suggestion": "grey mouse"},
        ]
    )
    stats = result.stats()
    assert stats["external_total"] == 2
    assert stats["live_total"] == 1
    assert stats["recreated"] == 1
    assert stats["orphaned"] == 1
    assert stats["errors"] == 1
    assert stats["success_rate"] == 0.5

    report = result.report()
    assert "[recreated]" in report
    assert "[orphaned]  sug_gate" in report
    assert "[error]     #1" in report
    print("PASS: report and stats")


def test_diagnostics_events():
    diagnostics = RecordingDiagnostics()
    engine = _gate_engine(diagnostics=diagnostics)
    engine.reconcile([{"original": "quick fix", "suggestion": "rapid fix"}, {"original": "purple elephant"}])
    names = diagnostics.names()
    assert "reconciler.recreated" in names
    assert "reconciler.recreation_failed" in names
    assert names[-1] == "state.apply"
    print("PASS: diagnostics")


if __name__ == "__main__":
    tests = [
        test_scenario_d_recreates_missing_suggestion,
        test_same_item_is_matched,
        test_missing_text_is_an_error,
        test_invalid_payload_is_an_error,
        test_missing_original_is_an_error,
        test_locate_ladder,
        test_recreate_maps_to_tree_positions,
        test_deletion_can_be_recreated,
        test_report_and_stats,
        test_diagnostics_events,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed == 0:
        print("ALL TESTS PASSED")
    else:
        print("SOME TESTS FAILED")
