import re
import logging

from dataclasses import dataclass

from indexor.errors import InvalidQuery
from preprocessing.preprocessor import Preprocessor

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r'"[^"]*"|\(|\)|[^\s()"]+')
PRECEDENCE = {"NOT": 3, "AND": 2, "OR": 1}
OPEN_BRACKET, CLOSE_BRACKET = "(", ")"


@dataclass(frozen=True)
class TermQuery:
    term: str

    def ppformat(self, level=0):
        return " " * level + self.term + "\n"

    def canonical(self):
        return self.term

    def leaves(self):
        yield self


@dataclass(frozen=True)
class PhraseQuery:
    terms: tuple[str, ...]
    # position gap between each pair of consecutive terms
    distances: tuple[int, ...]

    def ppformat(self, level=0):
        return " " * level + '"' + " ".join(self.terms) + '"' + "\n"

    def canonical(self):
        phrase = '"' + " ".join(self.terms) + '"'
        if any(d != 1 for d in self.distances):
            phrase += "@" + ",".join(str(d) for d in self.distances)
        return phrase

    def leaves(self):
        yield self


@dataclass(frozen=True)
class AND:
    children: tuple

    def ppformat(self, level=0):
        out = " " * level + "AND" + "\n"
        for child in self.children:
            out += child.ppformat(level + 1)
        return out

    def canonical(self):
        return "AND(" + ",".join(sorted(c.canonical() for c in self.children)) + ")"

    def leaves(self):
        for child in self.children:
            yield from child.leaves()


@dataclass(frozen=True)
class OR:
    children: tuple

    def ppformat(self, level=0):
        out = " " * level + "OR" + "\n"
        for child in self.children:
            out += child.ppformat(level + 1)
        return out

    def canonical(self):
        return "OR(" + ",".join(sorted(c.canonical() for c in self.children)) + ")"

    def leaves(self):
        for child in self.children:
            yield from child.leaves()


@dataclass(frozen=True)
class NOT:
    child: object

    def ppformat(self, level=0):
        return " " * level + "NOT" + "\n" + self.child.ppformat(level + 1)

    def canonical(self):
        return "NOT(" + self.child.canonical() + ")"

    def leaves(self):
        yield from self.child.leaves()


def _combine(op_class, left, right):
    """Builds an n-ary node, folding nested nodes of the same operator"""
    children = []
    for node in (left, right):
        if isinstance(node, op_class):
            children.extend(node.children)
        else:
            children.append(node)

    return op_class(tuple(children))


def _is_operand(token):
    return token not in PRECEDENCE and token not in (OPEN_BRACKET, CLOSE_BRACKET)


def validate(node, allow_not=False):
    """
    NOT is evaluated as a difference against its sibling terms, so it is only
    accepted directly under an AND that has at least one positive child.
    """
    if isinstance(node, NOT):
        if not allow_not:
            raise InvalidQuery(
                "NOT needs a bounded scope, combine it with a positive term (e.g. 'apple AND NOT mango')"
            )
        validate(node.child)
    elif isinstance(node, AND):
        if all(isinstance(child, NOT) for child in node.children):
            raise InvalidQuery("AND needs at least one operand that is not negated")
        for child in node.children:
            validate(child, allow_not=True)
    elif isinstance(node, OR):
        for child in node.children:
            validate(child)


class BooleanQuery:
    """
    Parses a query string into an immutable plan of TermQuery / PhraseQuery / AND / OR / NOT.

    Operators are the upper-case words AND, OR and NOT, with precedence NOT > AND > OR.
    Adjacent operands are joined with an implicit AND, parentheses group and double
    quotes mark a phrase. Words go through the same preprocessor as documents.
    """

    def __init__(self, query: str, preprocessor: Preprocessor | None = None):
        self.query = query
        self.preprocessor = preprocessor or Preprocessor()
        self.root = None

    def __str__(self):
        return self.canonical()

    def pprint(self):
        print(self.ppformat())

    def ppformat(self):
        return self.parse().ppformat()

    def canonical(self):
        return self.parse().canonical()

    def leaves(self):
        return list(self.parse().leaves())

    def terms(self) -> list[str]:
        terms = []
        for leaf in self.leaves():
            if isinstance(leaf, TermQuery):
                terms.append(leaf.term)
            else:
                terms.extend(leaf.terms)

        return list(dict.fromkeys(terms))

    def positive_terms(self) -> list[str]:
        """Terms that can contribute to a document's score (not under a NOT)"""
        terms = []

        def _collect(node):
            if isinstance(node, NOT):
                return
            if isinstance(node, TermQuery):
                terms.append(node.term)
            elif isinstance(node, PhraseQuery):
                terms.extend(node.terms)
            else:
                for child in node.children:
                    _collect(child)

        _collect(self.parse())
        return list(dict.fromkeys(terms))

    def parse(self):
        if self.root is not None:
            return self.root

        if not isinstance(self.query, str) or not self.query.strip():
            raise InvalidQuery("Query is empty")
        if self.query.count('"') % 2:
            raise InvalidQuery(f"Unbalanced quotes in query: {self.query}")

        tokens = self._insert_implicit_and(TOKEN_RE.findall(self.query))
        operands, operators = [], []

        def evaluate():
            op = operators.pop()
            if op == "NOT":
                operands.append(NOT(operands.pop()))
                return

            right = operands.pop()
            left = operands.pop()
            operands.append(_combine(AND if op == "AND" else OR, left, right))

        expect_operand = True
        for token in tokens:
            if token == "NOT":
                # unary prefix, binds to whatever operand follows
                operators.append(token)
                expect_operand = True
            elif token in PRECEDENCE:
                if expect_operand:
                    raise InvalidQuery(f"Operator {token} is missing its left operand")
                while (
                    operators
                    and operators[-1] in PRECEDENCE
                    and PRECEDENCE[operators[-1]] >= PRECEDENCE[token]
                ):
                    evaluate()
                operators.append(token)
                expect_operand = True
            elif token == OPEN_BRACKET:
                operators.append(token)
                expect_operand = True
            elif token == CLOSE_BRACKET:
                if expect_operand:
                    raise InvalidQuery("Empty parentheses or operator before ')'")
                while operators and operators[-1] != OPEN_BRACKET:
                    evaluate()
                if not operators:
                    raise InvalidQuery(f"Unbalanced ')' in query: {self.query}")
                operators.pop()
                expect_operand = False
            else:
                operands.append(self._build_operand(token))
                expect_operand = False

        if expect_operand:
            raise InvalidQuery(f"Query ends with an operator: {self.query}")

        while operators:
            if operators[-1] == OPEN_BRACKET:
                raise InvalidQuery(f"Unbalanced '(' in query: {self.query}")
            evaluate()

        root = operands.pop()
        validate(root)

        logger.debug(f"Parsed query {self.query!r} -> {root.canonical()}")
        self.root = root
        return root

    @staticmethod
    def _insert_implicit_and(tokens):
        result = []
        for token in tokens:
            if result and (
                _is_operand(result[-1]) or result[-1] == CLOSE_BRACKET
            ) and (_is_operand(token) or token in (OPEN_BRACKET, "NOT")):
                result.append("AND")
            result.append(token)

        return result

    def _build_operand(self, token):
        text = token[1:-1] if token.startswith('"') else token
        words = [
            word
            for block in self.preprocessor.preprocess(text, is_query=True)
            for word in block
        ]

        if not words:
            raise InvalidQuery(f"{token!r} has no searchable terms")
        if len(words) == 1:
            return TermQuery(words[0].term)

        distances = tuple(
            words[i].position - words[i - 1].position for i in range(1, len(words))
        )
        return PhraseQuery(tuple(w.term for w in words), distances)
