from dealerflow.text import (
    any_keyword_pattern,
    find_keyword,
    keyword_pattern,
    match_any_keyword,
    normalize_text,
    starts_with_any,
)


class TestNormalizeText:
    def test_strips_accents_and_lowercases(self):
        assert normalize_text("Até  80 MIL à Vista") == "ate 80 mil a vista"

    def test_empty_input(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""


class TestMatchAnyKeyword:
    def test_whole_word_only(self):
        assert match_any_keyword("quero trocar", {"troca"}) is False
        assert match_any_keyword("aceita troca?", {"troca"}) is True

    def test_accented_keyword_matches_plain_text(self):
        assert match_any_keyword("qual o endereco", {"endereço"}) is True

    def test_multi_word_keyword(self):
        assert match_any_keyword("nao quero mais nada", {"nao quero mais"}) is True

    def test_hyphen_is_part_of_word(self):
        assert find_keyword("quero um t-cross", "cross") == -1

    def test_empty_keyword_set(self):
        assert match_any_keyword("qualquer coisa", set()) is False


class TestKeywordPatterns:
    def test_patterns_are_compiled_once(self):
        assert keyword_pattern("suv") is keyword_pattern("suv")
        keywords = frozenset({"a vista", "pix"})
        assert any_keyword_pattern(keywords) is any_keyword_pattern(frozenset({"pix", "a vista"}))

    def test_longer_keyword_is_tried_first(self):
        match = any_keyword_pattern(frozenset({"corolla", "corolla cross"})).search("um corolla cross")
        assert match.group() == "corolla cross"


class TestStartsWithAny:
    def test_equal_start_or_end(self):
        assert starts_with_any("oi", {"oi"})
        assert starts_with_any("oi tudo bem", {"oi"})
        assert starts_with_any("tudo bem, oi", {"oi"})

    def test_middle_does_not_count(self):
        assert not starts_with_any("quero oi carro", {"oi"})
