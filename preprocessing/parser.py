import logging

from preprocessing import CodeBlock, NormalTextBlock
from lxml import etree

logger = logging.getLogger(__name__)

CODE_TAGS = {"pre", "code", "kbd", "samp"}
SKIPPED_TAGS = {"script", "style", "head"}


class DefaultParserInterface:
    def parse(self, data: str, field_id: int = 0):
        return [NormalTextBlock(text=data or "", block_id=0, field_id=field_id)]


class HTMLParserInterface:
    """
    Splits an HTML field into text and code blocks in document order.
    Tags themselves are never indexed, only the text they hold.
    """

    def __init__(self):
        self.parser = etree.HTMLParser()

    def __getstate__(self) -> object:
        data = self.__dict__.copy()
        del data["parser"]

        return data

    def __setstate__(self, state: object):
        self.__dict__.update(state)
        self.parser = etree.HTMLParser()

    def parse(self, data: str, field_id: int = 0):
        if not data or not data.strip():
            return []

        root = etree.fromstring(data, self.parser)
        if root is None:
            logger.debug(f"lxml returned no tree for field {field_id}")
            return []

        text_blocks = []
        self.process_element(root, text_blocks, field_id=field_id)

        return text_blocks

    def process_element(self, element, text_blocks, field_id=0, in_code=False):
        # comments and processing instructions carry a callable tag
        tag = element.tag.lower() if isinstance(element.tag, str) else None

        if tag is not None and tag not in SKIPPED_TAGS:
            is_code = in_code or tag in CODE_TAGS
            if element.text:
                self._append_block(
                    text_blocks, element.text, is_code, field_id, in_line=tag == "code" and not in_code
                )

            for child in element:
                self.process_element(child, text_blocks, field_id=field_id, in_code=is_code)

        if element.tail:
            self._append_block(text_blocks, element.tail, in_code, field_id)

    def _append_block(self, text_blocks, text, is_code, field_id, in_line=False):
        if not text.strip():
            return

        block_id = len(text_blocks)
        if is_code:
            text_blocks.append(
                CodeBlock(text=text, block_id=block_id, field_id=field_id, in_line=in_line)
            )
        else:
            text_blocks.append(NormalTextBlock(text=text, block_id=block_id, field_id=field_id))
