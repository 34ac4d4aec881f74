import pytest

from g2a.core.matching import find_partial_match, text_similarity


def test_similarity_ignores_case_order_and_short_words():
    assert text_similarity("the user clicks Save", "Save clicks the USER") == 1.0
    assert text_similarity("a to of", "the user") == 0.0
    assert text_similarity("user clicks save", "user clicks cancel") == pytest.approx(0.5)


def test_literal_match_is_case_insensitive():
    match = find_partial_match("When the user clicks Save", "USER CLICKS save")
    assert (match.start_index, match.end_index, match.text, match.similarity) == (9, 25, "user clicks Save", 1.0)


def test_punctuation_does_not_prevent_a_match():
    match = find_partial_match("Then the user, clicks Save!", "the user clicks Save")
    assert match.text == "the user, clicks Save"
    assert match.similarity == 1.0


@pytest.mark.parametrize("statement,needle", [("the user clicks Save", "delete the account"), ("", "x"), ("abc", "  ")])
def test_no_match(statement, needle):
    assert find_partial_match(statement, needle) is None
