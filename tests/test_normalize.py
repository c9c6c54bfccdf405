"""Tests for mockfs.normalize."""

from __future__ import annotations

from mockfs.messages import (
    CommitRequest,
    Document,
    DocumentTransform,
    FieldTransform,
    GetDocumentRequest,
    Value,
    Write,
)
from mockfs.normalize import normalize

_DOC = "projects/p/databases/(default)/documents/C/a"


def _transform_write(*paths: str) -> Write:
    return Write(
        transform=DocumentTransform(
            document=_DOC,
            field_transforms=[FieldTransform(field_path=p, set_to_server_value="REQUEST_TIME") for p in paths],
        )
    )


class TestNormalize:
    """Canonicalization of requests before comparison."""

    def test_field_transforms_sorted(self) -> None:
        """Transforms of every write come back sorted by field path."""
        request = CommitRequest(writes=[_transform_write("b", "c", "a")])
        result = normalize(request)
        assert [t.field_path for t in result.writes[0].transform.field_transforms] == ["a", "b", "c"]

    def test_permutations_compare_equal(self) -> None:
        """Two commits differing only in transform order are equal after normalizing."""
        a = CommitRequest(writes=[_transform_write("x", "y")])
        b = CommitRequest(writes=[_transform_write("y", "x")])
        assert a != b
        assert normalize(a) == normalize(b)

    def test_input_not_modified(self) -> None:
        """The original request keeps its order."""
        request = CommitRequest(writes=[_transform_write("b", "a")])
        normalize(request)
        assert [t.field_path for t in request.writes[0].transform.field_transforms] == ["b", "a"]

    def test_sort_is_stable(self) -> None:
        """Transforms sharing a path keep their relative order."""
        first = FieldTransform(field_path="a", increment=Value(integer_value=1))
        second = FieldTransform(field_path="a", increment=Value(integer_value=2))
        request = CommitRequest(
            writes=[
                Write(transform=DocumentTransform(document=_DOC, field_transforms=[second, FieldTransform("0"), first]))
            ]
        )
        result = normalize(request)
        assert result.writes[0].transform.field_transforms == [FieldTransform("0"), second, first]

    def test_writes_without_transform_untouched(self) -> None:
        """Update and delete writes pass through unchanged."""
        update = Write(update=Document(name=_DOC))
        delete = Write(delete=_DOC)
        result = normalize(CommitRequest(writes=[update, delete]))
        assert result.writes == [update, delete]

    def test_other_requests_returned_as_is(self) -> None:
        """Non-commit requests are returned unchanged."""
        request = GetDocumentRequest(name=_DOC)
        assert normalize(request) is request
        assert normalize(None) is None
