"""
Tests for revision diffing, proposal parsing and CriticMarkup rendering.

Run: python3 test_diff_markup.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from marginalia.diff import proposals_from_revision
from marginalia.markup import render_markup
from marginalia.models import Proposal
from marginalia.suggest.engine import SuggestionEngine


def _apply_all(original, proposals):
    engine = SuggestionEngine(original)
    applied, skipped = engine.set_suggestions(proposals)
    assert skipped == 0, engine.state.issues
    for s in list(engine.suggestions):
        assert engine.accept_suggestion(s.id), s
    return engine.text


def test_replacement_offsets():
    proposals = proposals_from_revision("The cat sat.", "The dog sat.")
    assert len(proposals) == 1
    p = proposals[0]
    assert (p.original, p.replacement) == ("cat", "dog")
    assert (p.start, p.end) == (4, 7)
    assert p.rationale == "Replacement"
    print("PASS: replacement offsets")


def test_deletion():
    original, revised = "The very big dog.", "The big dog."
    proposals = proposals_from_revision(original, revised)
    assert len(proposals) == 1
    assert proposals[0].replacement == ""
    assert proposals[0].rationale == "Text deleted"
    assert _apply_all(original, proposals) == revised
    print("PASS: deletion")


def test_insertion_is_anchored_on_previous_word():
    original, revised = "the cat", "the black cat"
    proposals = proposals_from_revision(original, revised)
    assert len(proposals) == 1
    p = proposals[0]
    assert p.original == "the "
    assert p.replacement == "the black "
    assert p.rationale == "Text inserted"
    assert _apply_all(original, proposals) == revised
    print("PASS: insertion anchored")


def test_insertion_at_start_of_document():
    original, revised = "cat sat", "The cat sat"
    proposals = proposals_from_revision(original, revised)
    assert len(proposals) == 1
    assert (proposals[0].original, proposals[0].replacement) == ("cat", "The cat")
    assert _apply_all(original, proposals) == revised
    print("PASS: start-of-document insertion")


def test_identical_texts():
    assert proposals_from_revision("Same text.", "Same text.") == []
    print("PASS: no changes")


def test_proposal_aliases():
    p = Proposal.model_validate(
        {"target_text": "sad", "new_text": "blue", "editType": "Style", "why": "Tone", "confidence": 7}
    )
    assert (p.original, p.replacement, p.edit_type, p.rationale) == ("sad", "blue", "Style", "Tone")
    assert p.confidence == 1.0

    p = Proposal.model_validate({"original": None, "suggestion": None, "editType": "", "confidence": -2})
    assert (p.original, p.replacement, p.edit_type, p.confidence) == ("", "", "Line", 0.0)

    payload = Proposal(original="sad", replacement="blue", start=3, end=6).to_payload()
    assert payload == {"original": "sad", "suggestion": "blue", "editType": "Line", "start": 3, "end": 6}
    print("PASS: proposal aliases")


def test_render_markup():
    engine = SuggestionEngine("The wind was blowing very hard.\n\nHer hair flew.")
    engine.set_suggestions(
        [
            {"id": "s1", "original": "was blowing very hard", "suggestion": "howled", "why": "Tighter"},
            {"id": "s2", "original": "hair ", "suggestion": ""},
        ]
    )
    assert render_markup(engine.state) == (
        "The wind {--was blowing very hard--}{++howled++}{>>Tighter s1<<}.\n\n"
        "Her {--hair --}{>>s2<<}flew."
    )
    assert render_markup(engine.state, include_ids=False) == (
        "The wind {--was blowing very hard--}{++howled++}{>>Tighter<<}.\n\n"
        "Her {--hair --}flew."
    )
    assert render_markup(engine.state, include_ids=False, highlight_only=True) == (
        "The wind {==was blowing very hard==}{>>Tighter<<}.\n\n"
        "Her {==hair ==}flew."
    )
    print("PASS: render markup")


def test_render_conflict():
    engine = SuggestionEngine("The quick brown fox.")
    engine.set_suggestions(
        [
            {"id": "a", "original": "quick brown", "suggestion": "fast"},
            {"id": "b", "original": "brown fox", "suggestion": "cat"},
        ]
    )
    assert render_markup(engine.state) == "The {==quick brown fox==}{>>conflict: a, b<<}."
    print("PASS: conflict markup")


if __name__ == "__main__":
    tests = [
        test_replacement_offsets,
        test_deletion,
        test_insertion_is_anchored_on_previous_word,
        test_insertion_at_start_of_document,
        test_identical_texts,
        test_proposal_aliases,
        test_render_markup,
        test_render_conflict,
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
