"""
Tests for suggestion ids, fingerprints and text normalization.

Run: python3 test_identity.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from marginalia.identity import (
    are_similar_suggestions,
    classify_change,
    confidence_bucket,
    create_suggestion_metadata,
    generate_fingerprint,
    generate_suggestion_id,
    is_valid_suggestion_id,
    parse_suggestion_id,
    text_complexity,
)
from marginalia.utils.text import levenshtein, normalize_text, normalize_with_map, text_similarity


def test_normalize_text():
    assert normalize_text("  Hello’s   “World” — ok…  ") == "hello's \"world\" - ok..."
    assert normalize_text("A\tB\n\nC") == "a b c"
    assert normalize_text("") == ""
    assert normalize_text(None) == ""
    print("PASS: normalize_text")


def test_normalize_with_map_points_at_raw_text():
    raw = "  The   “Quick”\n fox"
    norm, index_map = normalize_with_map(raw)
    assert norm == normalize_text(raw)
    assert len(index_map) == len(norm)
    start = norm.find('"quick"')
    assert raw[index_map[start] : index_map[start + 6] + 1] == "“Quick”"
    print("PASS: normalize_with_map")


def test_fingerprint_ignores_surface_variation():
    a = generate_fingerprint("The  Quick fox", "the rapid fox")
    b = generate_fingerprint("the quick\nfox", "The Rapid  fox")
    c = generate_fingerprint("the quick fox", "the slow fox")
    assert a == b
    assert a != c
    assert len(a) == 12
    print("PASS: fingerprint")


def test_generated_ids():
    id1 = generate_suggestion_id("quick fix", "rapid fix", "Line", 0.93)
    id2 = generate_suggestion_id("Quick  fix", "rapid fix", "Line", 0.88)
    assert id1 != id2
    assert is_valid_suggestion_id(id1)

    p1 = parse_suggestion_id(id1)
    p2 = parse_suggestion_id(id2)
    assert p1.valid and p2.valid
    assert p1.content_hash == generate_fingerprint("quick fix", "rapid fix")
    # Same bucket (0.9), same edit type -> same context hash
    assert p1.context_hash == p2.context_hash
    assert are_similar_suggestions(id1, id2)

    other_type = parse_suggestion_id(generate_suggestion_id("quick fix", "rapid fix", "Style", 0.93))
    assert other_type.context_hash != p1.context_hash
    assert other_type.content_hash == p1.content_hash
    print("PASS: generated ids")


def test_invalid_ids():
    for bad in ["nope", "sug_a_b", "sug__b_c", "xyz_a_b_c", None, 12]:
        assert not is_valid_suggestion_id(bad), bad
    assert not are_similar_suggestions("nope", "sug_a_b_c")
    print("PASS: invalid ids")


def test_confidence_bucket():
    assert confidence_bucket(0.93) == 9
    assert confidence_bucket(0.88) == 9
    assert confidence_bucket(None) == 10
    assert confidence_bucket(3.0) == 10
    assert confidence_bucket(-1) == 0
    print("PASS: confidence bucket")


def test_classify_change():
    assert classify_change("very sad", "very unhappy") == "substitution"
    assert classify_change("sad", "deeply sad") == "expansion"
    assert classify_change("was blowing very hard", "howled") == "reduction"
    assert classify_change("", "x") == "unknown"
    print("PASS: classify_change")


def test_text_complexity_bounds():
    assert text_complexity("") == 0.0
    for s in ["a", "hello world", "The quick brown fox jumps over the lazy dog " * 5]:
        assert 0.0 <= text_complexity(s) <= 1.0
    assert text_complexity("The quick brown fox jumps over the lazy dog " * 5) == 1.0
    print("PASS: text_complexity")


def test_text_similarity():
    assert text_similarity("Quick  Fix", "quick fix") == 1.0
    assert text_similarity("", "") == 1.0
    assert text_similarity("abc", "") == 0.0
    assert abs(text_similarity("quick fix", "quick fixx") - 0.9) < 1e-9
    # Substitution
    assert abs(text_similarity("kitten", "sitting") - 4 / 7) < 1e-9
    # Transposed letters cost two substitutions
    assert abs(text_similarity("quick brown fox", "quick bworn fox") - 13 / 15) < 1e-9
    # Nothing in common
    assert text_similarity("abc", "xyz") == 0.0
    assert text_similarity("abc", "cxa") == 0.0
    print("PASS: text_similarity")


def test_levenshtein_is_exact_and_bounded():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("quick brown fox", "quick bworn fox") == 2
    assert levenshtein("abc", "cxa") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0
    pairs = [("abc", "cxa"), ("flaw", "lawn"), ("intention", "execution"), ("a", "bcdef")]
    for a, b in pairs:
        assert levenshtein(a, b) <= max(len(a), len(b)), (a, b)
        assert 0.0 <= text_similarity(a, b) <= 1.0, (a, b)
    print("PASS: levenshtein")


def test_suggestion_metadata():
    meta = create_suggestion_metadata("The  Storm", "the tempest", "Line", 0.8)
    assert meta.fingerprint == generate_fingerprint("The  Storm", "the tempest")
    assert meta.normalized_original == "the storm"
    assert meta.original_length == 10
    assert meta.replacement_length == 11
    assert meta.change_type == "substitution"
    assert meta.confidence == 0.8
    print("PASS: suggestion metadata")


if __name__ == "__main__":
    tests = [
        test_normalize_text,
        test_normalize_with_map_points_at_raw_text,
        test_fingerprint_ignores_surface_variation,
        test_generated_ids,
        test_invalid_ids,
        test_confidence_bucket,
        test_classify_change,
        test_text_complexity_bounds,
        test_text_similarity,
        test_levenshtein_is_exact_and_bounded,
        test_suggestion_metadata,
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
