from dataclasses import dataclass, field


@dataclass
class Block:
    text: str
    block_id: int

    words: list["Term"] = field(default_factory=list)

    def __iter__(self):
        for word in self.words:
            yield word


@dataclass
class NormalTextBlock(Block):
    """
    Plain prose. Every document field parsed in `raw` mode becomes one of these
    """

    field_id: int = 0


@dataclass
class CodeBlock(NormalTextBlock):
    in_line: bool = False


@dataclass
class Term:
    term: str = ""
    original_term: str = ""  # before normalization
    position: int = -1  # for phrase matching
    start_char_offset: int = -1  # highlighting search snippets
    end_char_offset: int = -1  # highlighting search snippets
