import re

from preprocessing import Term


class ClassicTokenizer:
    """
    This tokenizer is based on the classic tokenizer in Elasticsearch
    https://www.elastic.co/guide/en/elasticsearch/reference/current/analysis-classic-tokenizer.html

    The following main points are applied:
        - Splits hyphenated words into their parts (e.g. "High-performance" -> "High performance")
        - Recognises emails and URLs
        - Splits text based on regex defined word boundaries
        - Keeps contractions together (e.g. "I've"), the normalizer decides how to fold them

    We do not explictly remove punctuation as the regex pattern matches words and therefore punctuation is removed if it is not part of a word or we are not explicitly looking for it
    """

    def __init__(self, keep_links=True):
        self.keep_links = keep_links

        self.email_address_re = re.compile(
            r"(?:[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]*[a-zA-Z0-9])"
        )
        self.url_re = re.compile(r"(?:(?:http|https)://[^\s]+)|(?:www\.[^\s]+)")

        self.token_re = re.compile(
            rf"""
                {self.url_re.pattern}
                |{self.email_address_re.pattern}
                |(?:\b\w+'\w+\b)
                |(?:\b\w+\b)
            """,
            re.VERBOSE,
        )

    def __call__(self, *args, **kwargs):
        return self.tokenize(*args, **kwargs)

    def tokenize(self, text, is_orderable=True, start_position=0) -> list[Term]:
        if not text or not text.strip():
            return []

        return self._tokenize(text, is_orderable=is_orderable, position=start_position)

    def _tokenize(self, text, is_orderable=True, position=0) -> list[Term]:
        tokens = []

        for match in self.token_re.finditer(text):
            token = match.group()
            is_link = self._is_email_address(token) or self._is_url(token)
            if is_link and not self.keep_links:
                continue

            tokens.append(
                Term(
                    term=token,
                    original_term=token,
                    position=position if is_orderable else -1,
                    start_char_offset=match.start() if is_orderable else -1,
                    end_char_offset=match.end() if is_orderable else -1,
                )
            )
            position += 1

        return tokens

    def _is_email_address(self, text):
        return self.email_address_re.fullmatch(text) is not None

    def _is_url(self, text):
        return self.url_re.match(text) is not None
