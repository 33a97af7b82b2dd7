import logging

from dataclasses import dataclass
from preprocessing import Term
from preprocessing.normalizer import (
    Normalizer,
    LowerCaseNormalizer,
    PunctuationNormalizer,
    StopWordNormalizer,
    StemmingNormalizer,
    UnicodeToAsciiNormalizer,
)
from preprocessing.sub_tokenizers.classic_tokenizer import ClassicTokenizer

logger = logging.getLogger(__name__)

# Positions jump by this much between fields so phrases never span two fields
FIELD_POSITION_GAP = 100

ENGLISH_STOP_WORDS = frozenset(
    "a an and are as at be but by for if in into is it no not of on or such "
    "that the their then there these they this to was will with".split()
)


@dataclass
class TokenizedOutput:
    tokenized_text: list[Term]
    original_number_of_words: int = 0


DEFAULT_TOKENIZER_KWARGS = {
    "keep_links": True,
}


DEFAULT_NORMALIZER_OPERATIONS = [
    UnicodeToAsciiNormalizer(),
    LowerCaseNormalizer(),
    PunctuationNormalizer(),
]


def BuildNormalizer(normalizer_type: str):
    if normalizer_type == "default":
        return list(DEFAULT_NORMALIZER_OPERATIONS)
    elif normalizer_type == "stopwords":
        return list(DEFAULT_NORMALIZER_OPERATIONS) + [
            StopWordNormalizer(stop_words_set=ENGLISH_STOP_WORDS)
        ]
    elif normalizer_type == "stemmed":
        return list(DEFAULT_NORMALIZER_OPERATIONS) + [
            StopWordNormalizer(stop_words_set=ENGLISH_STOP_WORDS),
            StemmingNormalizer(),
        ]

    raise ValueError(f"Unknown normalizer type: {normalizer_type}")


class Tokenizer:
    """
    Deterministic text -> token transform. The normalizer chain is fixed when the
    tokenizer is built; `tokenize` holds no state between calls.
    """

    def __init__(
        self,
        tokenizer_kwargs=DEFAULT_TOKENIZER_KWARGS,
        normalizer_operations=DEFAULT_NORMALIZER_OPERATIONS,
    ):
        self.tokenizer = ClassicTokenizer(**tokenizer_kwargs)
        self.normalizer = Normalizer(normalizer_operations)

    def __repr__(self):
        return f"Tokenizer(tokenizer={type(self.tokenizer).__name__}, normalizer={self.normalizer})"

    def __call__(self, *args, **kwargs):
        return self.tokenize(*args, **kwargs)

    def tokenize(self, text, start_position=0) -> list[Term]:
        return self.tokenize_with_count(text, start_position).tokenized_text

    def tokenize_with_count(self, text, start_position=0) -> TokenizedOutput:
        if text is None:
            return TokenizedOutput(tokenized_text=[], original_number_of_words=0)

        tokenized_out = self.tokenizer(text, start_position=start_position)
        return TokenizedOutput(
            tokenized_text=self.normalizer(tokenized_out),
            original_number_of_words=len(tokenized_out),
        )
