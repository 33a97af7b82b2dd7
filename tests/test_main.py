import json

import pytest

from indexor.errors import IngestionOverloaded
from indexor.main import index_file, read_documents


class OverloadedService:
    """Rejects the first `failures` requests, then accepts everything"""

    def __init__(self, failures):
        self.failures = failures
        self.attempts = 0
        self.indexed = []
        self.flushed = False

    def index_document(self, doc_id, fields):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise IngestionOverloaded(0, 1)
        self.indexed.append((doc_id, fields))

    def flush(self):
        self.flushed = True


@pytest.fixture
def documents_file(tmp_path):
    path = tmp_path / "documents.jsonl"
    lines = [
        {"doc_id": "doc1", "fields": ["apple pie", "recipe"]},
        {"doc_id": 2, "text": "banana"},
    ]
    path.write_text("\n".join(json.dumps(x) for x in lines) + "\n\n")
    return str(path)


def test_read_documents(documents_file):
    assert list(read_documents(documents_file)) == [
        ("doc1", ["apple pie", "recipe"]),
        ("2", ["banana"]),
    ]


def test_index_file_retries_overloaded_requests(documents_file):
    service = OverloadedService(failures=3)

    assert index_file(service, documents_file, max_wait=0.01) == 2
    assert service.attempts == 5
    assert [doc_id for doc_id, _ in service.indexed] == ["doc1", "2"]
    assert service.flushed


def test_index_file_gives_up_after_max_retries(documents_file):
    service = OverloadedService(failures=100)

    with pytest.raises(IngestionOverloaded):
        index_file(service, documents_file, max_retries=3, max_wait=0.01)

    assert service.attempts == 3
    assert not service.flushed
