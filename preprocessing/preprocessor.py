import logging

from preprocessing import Term
from preprocessing.parser import DefaultParserInterface, HTMLParserInterface
from preprocessing.tokenizer import (
    DEFAULT_TOKENIZER_KWARGS,
    FIELD_POSITION_GAP,
    BuildNormalizer,
    Tokenizer,
)

logger = logging.getLogger(__name__)


def BuildParser(parser_type: str, **kwargs):
    if parser_type == "html":
        return HTMLParserInterface(**kwargs)
    elif parser_type == "raw":
        return DefaultParserInterface(**kwargs)
    else:
        raise ValueError(
            f"Parser type {parser_type} not recognized. Use 'html' or 'raw'"
        )


class Preprocessor:
    """
    Parser + tokenizer. Documents and queries must go through the same
    preprocessor so that query words land on the terms that were indexed.
    """

    def __init__(
        self,
        parser_kwargs={"parser_type": "raw"},
        tokenizer_kwargs=DEFAULT_TOKENIZER_KWARGS,
        normalizer_type="default",
    ):
        self.parser = BuildParser(**parser_kwargs)
        self.tokenizer = Tokenizer(
            tokenizer_kwargs=tokenizer_kwargs,
            normalizer_operations=BuildNormalizer(normalizer_type),
        )
        # queries are plain text even when documents are HTML
        self.query_parser = DefaultParserInterface()

    def __call__(self, text, **kwargs):
        return self.preprocess(text, **kwargs)

    def preprocess(self, text, return_words=False, field_id=0, start_position=0, is_query=False):
        parser = self.query_parser if is_query else self.parser
        text_blocks = parser.parse(text, field_id=field_id)

        position = start_position
        for text_block in text_blocks:
            tokenized_out = self.tokenizer.tokenize_with_count(
                text_block.text, start_position=position
            )
            text_block.words = tokenized_out.tokenized_text
            position += tokenized_out.original_number_of_words

        if return_words:
            return [word.term for block in text_blocks for word in block]

        return text_blocks

    def preprocess_fields(self, fields) -> tuple[list[Term], int]:
        """
        Tokenizes every field of a document.

        Returns:
            terms: list[Term] - normalized tokens, positions unique across fields
            length: int - number of tokens indexed for the document
        """
        terms = []
        position = 0
        for field_id, field_text in enumerate(fields):
            text_blocks = self.preprocess(
                field_text, field_id=field_id, start_position=position
            )
            for block in text_blocks:
                terms.extend(block.words)

            last = max((w.position for w in terms), default=position - 1)
            position = max(position, last + 1) + FIELD_POSITION_GAP

        return terms, len(terms)
