import pytest

from preprocessing.preprocessor import Preprocessor
from preprocessing.tokenizer import FIELD_POSITION_GAP, BuildNormalizer, Tokenizer


def terms_of(tokens):
    return [t.term for t in tokens]


def test_tokenize_lowercases_and_drops_punctuation():
    tokens = Tokenizer().tokenize("Hello, World!")

    assert terms_of(tokens) == ["hello", "world"]
    assert [t.position for t in tokens] == [0, 1]
    assert [t.original_term for t in tokens] == ["Hello", "World"]


def test_tokenize_is_deterministic():
    tokenizer = Tokenizer()
    text = "The quick brown fox jumps over the lazy dog"

    assert tokenizer.tokenize(text) == tokenizer.tokenize(text)


def test_start_position_offsets_positions():
    tokens = Tokenizer().tokenize("apple banana", start_position=10)

    assert [t.position for t in tokens] == [10, 11]


def test_accents_and_contractions():
    tokenizer = Tokenizer()

    assert terms_of(tokenizer.tokenize("Café")) == ["cafe"]
    assert terms_of(tokenizer.tokenize("I've")) == ["ive"]


def test_links_are_single_tokens():
    tokens = Tokenizer().tokenize("see https://example.com/page or mail me@example.com")

    assert "https://example.com/page" in terms_of(tokens)
    assert "me@example.com" in terms_of(tokens)


def test_empty_text():
    tokenizer = Tokenizer()

    assert tokenizer.tokenize("") == []
    assert tokenizer.tokenize("   ") == []
    assert tokenizer.tokenize(None) == []


def test_stopwords_keep_original_positions():
    tokenizer = Tokenizer(normalizer_operations=BuildNormalizer("stopwords"))
    tokens = tokenizer.tokenize("the apple and the mango")

    assert terms_of(tokens) == ["apple", "mango"]
    assert [t.position for t in tokens] == [1, 4]


def test_stemmed_normalizer():
    tokenizer = Tokenizer(normalizer_operations=BuildNormalizer("stemmed"))

    assert terms_of(tokenizer.tokenize("running")) == ["run"]


def test_unknown_normalizer():
    with pytest.raises(ValueError):
        BuildNormalizer("bogus")


def test_fields_are_separated_by_position_gap():
    terms, length = Preprocessor().preprocess_fields(["apple banana", "mango"])

    assert [t.term for t in terms] == ["apple", "banana", "mango"]
    assert [t.position for t in terms] == [0, 1, 2 + FIELD_POSITION_GAP]
    assert length == 3


def test_html_parser_skips_markup_and_scripts():
    preprocessor = Preprocessor(parser_kwargs={"parser_type": "html"})
    words = preprocessor.preprocess(
        "<p>hello <code>x = 1</code> world</p><script>var bad = 1;</script>",
        return_words=True,
    )

    assert words == ["hello", "x", "1", "world"]


def test_query_text_is_never_parsed_as_html():
    preprocessor = Preprocessor(parser_kwargs={"parser_type": "html"})

    assert preprocessor.preprocess("<b>bold</b>", return_words=True, is_query=True) == ["b", "bold", "b"]
