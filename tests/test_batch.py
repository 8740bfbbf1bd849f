import json

import pytest

from migration_fabric.errors import ConfigurationError, ProtocolError
from migration_fabric.odata.batch import (
    BatchBuilder,
    boundary_from_content_type,
    parse_v2_batch_response,
    parse_v4_batch_response,
)


V2_RESPONSE = (
    "--batch_resp\r\n"
    "Content-Type: application/http\r\n"
    "Content-Transfer-Encoding: binary\r\n"
    "\r\n"
    "HTTP/1.1 200 OK\r\n"
    "Content-Type: application/json\r\n"
    "\r\n"
    '{"d": {"results": [{"id": "1"}]}}\r\n'
    "--batch_resp\r\n"
    "Content-Type: multipart/mixed; boundary=changeset_1\r\n"
    "\r\n"
    "--changeset_1\r\n"
    "Content-Type: application/http\r\n"
    "\r\n"
    "HTTP/1.1 201 Created\r\n"
    "Location: Orders('2')\r\n"
    "\r\n"
    '{"d": {"id": "2"}}\r\n'
    "--changeset_1\r\n"
    "Content-Type: application/http\r\n"
    "\r\n"
    "HTTP/1.1 204 No Content\r\n"
    "\r\n"
    "--changeset_1--\r\n"
    "--batch_resp--\r\n"
)


@pytest.mark.unit
class TestBatchBuilder:
    """Test $batch request assembly."""

    def test_v2_multipart_body(self) -> None:
        request = BatchBuilder("v2").add_get("/Orders").add_post("/Orders", {"id": "1"}).build()
        boundary = request["boundary"]
        body = request["body"]

        assert request["headers"]["Content-Type"] == f"multipart/mixed; boundary={boundary}"
        assert body.count(f"--{boundary}\r\n") == 2
        assert body.endswith(f"--{boundary}--")
        assert "GET /Orders HTTP/1.1" in body
        assert "POST /Orders HTTP/1.1" in body
        assert 'Content-Length: 10\r\n\r\n{"id":"1"}' in body

    def test_v4_json_envelope(self) -> None:
        builder = BatchBuilder("v4").add_patch("/Orders('1')", {"s": "X"}).add_delete("/Orders('2')")
        request = builder.build()
        envelope = json.loads(request["body"])

        assert builder.count == 2
        assert request["boundary"] is None
        assert envelope["requests"][0] == {
            "id": "1",
            "method": "PATCH",
            "url": "/Orders('1')",
            "headers": {"Content-Type": "application/json"},
            "body": {"s": "X"},
        }
        assert envelope["requests"][1]["method"] == "DELETE"
        assert "body" not in envelope["requests"][1]

    def test_unsupported_version(self) -> None:
        with pytest.raises(ConfigurationError):
            BatchBuilder("v3")


@pytest.mark.unit
class TestBatchParsing:
    """Test batch response demultiplexing."""

    def test_v2_parts_and_changesets(self) -> None:
        results = parse_v2_batch_response(V2_RESPONSE, "batch_resp")

        assert [r.status_code for r in results] == [200, 201, 204]
        assert results[0].body == {"d": {"results": [{"id": "1"}]}}
        assert results[1].headers["Location"] == "Orders('2')"
        assert results[2].body is None
        assert all(r.ok for r in results)

    def test_v2_empty_response(self) -> None:
        assert parse_v2_batch_response("", "b") == []

    def test_boundary_from_content_type(self) -> None:
        assert boundary_from_content_type("multipart/mixed; boundary=batchresponse_1") == "batchresponse_1"
        assert boundary_from_content_type('multipart/mixed; boundary="b-2"; charset=utf-8') == "b-2"
        assert boundary_from_content_type("application/json") is None
        assert boundary_from_content_type(None) is None

    def test_v4_responses(self) -> None:
        results = parse_v4_batch_response({
            "responses": [
                {"id": "1", "status": 400, "body": {"error": "bad"}},
                {"id": "2", "status": 204, "body": {"ignored": True}},
            ]
        })

        assert results[0].to_dict() == {"id": "1", "statusCode": 400, "headers": {}, "body": {"error": "bad"}}
        assert not results[0].ok
        assert results[1].body is None

    def test_v4_invalid_json(self) -> None:
        with pytest.raises(ProtocolError):
            parse_v4_batch_response("not json")
