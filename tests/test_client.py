import json
import threading

import pytest
import requests

from conftest import make_response
from migration_fabric.errors import (
    AuthenticationError,
    CancelledError,
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    CsrfError,
    RequestError,
    ServerError,
)
from migration_fabric.odata import BasicAuthProvider, BatchBuilder, ODataClient


def _sent(session, index: int = -1):
    """Return (method, url, headers, data) of a request made through the fake session."""
    call = session.request.call_args_list[index]
    method, url = call.args[0], call.args[1]
    return method, url, call.kwargs["headers"], call.kwargs["data"]


@pytest.mark.unit
class TestPagination:
    """Test next-link following for both dialects."""

    def test_v4_follows_relative_next_link(self, make_client, session) -> None:
        """Two pages joined by @odata.nextLink come back as one list."""
        session.request.side_effect = [
            make_response(200, {"value": [{"Id": "1"}], "@odata.nextLink": "/x?$skiptoken=abc"}),
            make_response(200, {"value": [{"Id": "2"}]}),
        ]
        client = make_client(dialect="v4")

        records = client.get_all("/x")

        assert records == [{"Id": "1"}, {"Id": "2"}]
        assert session.request.call_count == 2
        assert _sent(session, 0)[1] == "https://example.test/x?$format=json"
        assert _sent(session, 1)[1] == "https://example.test/x?$skiptoken=abc"

    def test_v2_follows_d_next(self, make_client, session) -> None:
        session.request.side_effect = [
            make_response(200, {"d": {"results": [{"id": "A"}], "__next": "https://example.test/Set?$skiptoken=1"}}),
            make_response(200, {"d": {"results": [{"id": "B"}]}}),
        ]
        client = make_client()

        assert client.get_all("/Set") == [{"id": "A"}, {"id": "B"}]
        assert _sent(session, 1)[1] == "https://example.test/Set?$skiptoken=1"

    def test_max_records_stops_paging(self, make_client, session) -> None:
        """No further page is requested once the cap is reached."""
        session.request.side_effect = [
            make_response(200, {"value": [{"id": 1}, {"id": 2}], "@odata.nextLink": "/Orders?$skiptoken=2"}),
        ]
        client = make_client(dialect="v4")

        assert client.get_all("/Orders", max_records=2) == [{"id": 1}, {"id": 2}]
        assert session.request.call_count == 1

    def test_params_are_encoded_into_url(self, make_client, session) -> None:
        session.request.return_value = make_response(200, {"d": {"results": []}})
        client = make_client()

        client.get_all("/Set", {"$filter": "ERDAT ge '2024-01-01'", "$top": 10})

        url = _sent(session)[1]
        assert url.startswith("https://example.test/Set?")
        assert "$filter=ERDAT%20ge%20'2024-01-01'" in url
        assert "$top=10" in url


@pytest.mark.unit
class TestCsrf:
    """Test the CSRF handshake on writes."""

    def test_handshake_seeds_token_and_cookie(self, make_client, session) -> None:
        """A write first sends HEAD, then replays the token and session cookie."""
        session.head.return_value = make_response(
            200, headers={"X-CSRF-Token": "csrf-abc", "Set-Cookie": "SESSION=xyz; Path=/; HttpOnly"}
        )
        session.request.return_value = make_response(201, {"d": {"id": "1"}})
        client = make_client()

        result = client.post("/Orders", {"id": "1"})

        assert result == {"d": {"id": "1"}}
        head_headers = session.head.call_args.kwargs["headers"]
        assert head_headers["X-CSRF-Token"] == "Fetch"

        method, url, headers, data = _sent(session)
        assert method == "POST"
        assert url == "https://example.test/Orders"
        assert headers["X-CSRF-Token"] == "csrf-abc"
        assert headers["Cookie"] == "SESSION=xyz"
        assert headers["Content-Type"] == "application/json"
        assert data == '{"id": "1"}'

    def test_token_is_cached_between_writes(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(201, {"ok": True})
        client = make_client()

        client.post("/A", {"x": 1})
        client.post("/B", {"x": 2})

        assert session.head.call_count == 1
        assert client.csrf_token == "tok"

    def test_rejected_token_is_refreshed_once(self, make_client, session, sleeps) -> None:
        """A 403 mentioning CSRF forces a new handshake without using a retry attempt."""
        session.head.side_effect = [
            make_response(200, headers={"X-CSRF-Token": "old"}),
            make_response(200, headers={"X-CSRF-Token": "new"}),
        ]
        session.request.side_effect = [
            make_response(403, text="CSRF token validation failed", headers={"X-CSRF-Token": "Required"}),
            make_response(201, {"ok": True}),
        ]
        client = make_client(retries=0)

        assert client.post("/Orders", {"id": "1"}) == {"ok": True}
        assert session.head.call_count == 2
        assert _sent(session, 1)[2]["X-CSRF-Token"] == "new"
        assert sleeps == []

    def test_second_rejection_raises_csrf_error(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(403, text="CSRF token validation failed")
        client = make_client()

        with pytest.raises(CsrfError) as exc_info:
            client.post("/Orders", {"id": "1"})

        assert exc_info.value.kind == "protocol"
        assert session.request.call_count == 2

    def test_failed_handshake_sends_no_placeholder(self, make_client, session) -> None:
        """When the HEAD fails the write proceeds without a token header."""
        session.head.side_effect = requests.ConnectionError("refused")
        session.request.return_value = make_response(201, {"ok": True})
        client = make_client()

        client.post("/Orders", {"id": "1"})

        assert "X-CSRF-Token" not in _sent(session)[2]

    def test_required_token_header_is_not_replayed(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "Required"})
        session.request.return_value = make_response(204)
        client = make_client()

        assert client.delete("/Orders('1')") is None
        assert "X-CSRF-Token" not in _sent(session)[2]

    def test_handshake_401_raises_authentication_error(self, make_client, session) -> None:
        session.head.return_value = make_response(401)
        client = make_client()

        with pytest.raises(AuthenticationError):
            client.post("/Orders", {"id": "1"})
        session.request.assert_not_called()

    def test_reads_skip_the_handshake(self, make_client, session) -> None:
        session.request.return_value = make_response(200, {"d": {"id": "1"}})
        client = make_client()

        client.get("/Orders('1')")

        session.head.assert_not_called()
        assert "X-CSRF-Token" not in _sent(session)[2]

    def test_merge_is_tunnelled_through_post(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(204)
        client = make_client()

        client.merge("/Orders('1')", {"status": "X"})

        method, _, headers, _ = _sent(session)
        assert method == "POST"
        assert headers["X-HTTP-Method"] == "MERGE"

    @pytest.mark.parametrize("verb", ["put", "patch"])
    def test_update_verbs_send_json(self, make_client, session, verb: str) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(204)
        client = make_client()

        assert getattr(client, verb)("/Orders('1')", {"status": "X"}) is None

        method, url, headers, data = _sent(session)
        assert method == verb.upper()
        assert url == "https://example.test/Orders('1')"
        assert json.loads(data) == {"status": "X"}
        assert headers["X-CSRF-Token"] == "tok"

    def test_delete_has_no_body(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(204)

        make_client().delete("/Orders('1')")

        method, _, _, data = _sent(session)
        assert method == "DELETE"
        assert data is None


@pytest.mark.unit
class TestRetries:
    """Test retry and error classification."""

    def test_server_errors_are_retried_with_backoff(self, make_client, session, sleeps) -> None:
        session.request.side_effect = [
            make_response(503, text="busy"),
            make_response(502, text="bad gateway"),
            make_response(200, {"value": []}),
        ]
        client = make_client(retries=3)

        assert client.get("/Set") == {"value": []}
        assert sleeps == [1.0, 2.0]

    def test_exhausted_retries_raise_last_error(self, make_client, session, sleeps) -> None:
        session.request.return_value = make_response(500, {"error": {"message": "dump"}})
        client = make_client(retries=2)

        with pytest.raises(ServerError) as exc_info:
            client.get("/Set")

        assert session.request.call_count == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["body"] == {"error": {"message": "dump"}}
        assert len(sleeps) == 2

    def test_401_is_never_retried(self, make_client, session, sleeps) -> None:
        session.request.return_value = make_response(401)
        client = make_client(retries=3)

        with pytest.raises(AuthenticationError) as exc_info:
            client.get("/Set")

        assert exc_info.value.kind == "auth"
        assert session.request.call_count == 1
        assert sleeps == []

    def test_404_is_a_request_error(self, make_client, session) -> None:
        session.request.return_value = make_response(404, text="not here")
        client = make_client()

        with pytest.raises(RequestError) as exc_info:
            client.get("/Missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "not here"
        assert session.request.call_count == 1

    def test_retry_after_is_honored(self, make_client, session, sleeps) -> None:
        session.request.side_effect = [
            make_response(429, headers={"Retry-After": "7"}),
            make_response(200, {"value": [{"id": 1}]}),
        ]
        client = make_client()

        assert client.get("/Set") == {"value": [{"id": 1}]}
        assert sleeps == [7.0]

    def test_network_errors_become_connection_errors(self, make_client, session) -> None:
        session.request.side_effect = requests.ConnectionError("refused")
        client = make_client(retries=1)

        with pytest.raises(ConnectionError) as exc_info:
            client.get("/Set")

        assert exc_info.value.kind == "connection"
        assert exc_info.value.details["url"] == "https://example.test/Set"

    def test_timeouts_become_connection_errors(self, make_client, session) -> None:
        session.request.side_effect = requests.Timeout("slow")
        client = make_client(retries=0, timeout=5)

        with pytest.raises(ConnectionError, match="timed out after 5s"):
            client.get("/Set")


@pytest.mark.unit
class TestCircuitBreaking:
    """Test the breaker as seen through the client."""

    def test_breaker_opens_and_fails_fast(self, make_client, session) -> None:
        """Three connection failures open the breaker; the fourth call never reaches the network."""
        session.request.side_effect = requests.ConnectionError("refused")
        client = make_client(retries=0, circuit_breaker_threshold=3)

        for _ in range(3):
            with pytest.raises(ConnectionError):
                client.get("/Set")

        assert client.get_circuit_breaker_stats()["state"] == "open"

        with pytest.raises(CircuitOpenError) as exc_info:
            client.get("/Set")

        assert exc_info.value.kind == "connection"
        assert "circuit" in str(exc_info.value).lower()
        assert session.request.call_count == 3

    def test_client_errors_do_not_open_the_breaker(self, make_client, session) -> None:
        session.request.return_value = make_response(400, text="bad")
        client = make_client(circuit_breaker_threshold=1)

        for _ in range(3):
            with pytest.raises(RequestError):
                client.get("/Set")

        assert client.get_circuit_breaker_stats()["state"] == "closed"

    def test_each_client_has_its_own_breaker(self, make_client, session) -> None:
        session.request.side_effect = requests.ConnectionError("refused")
        first = make_client(retries=0, circuit_breaker_threshold=1)
        second = make_client(retries=0, circuit_breaker_threshold=1)

        with pytest.raises(ConnectionError):
            first.get("/Set")

        assert first.get_circuit_breaker_stats()["state"] == "open"
        assert second.get_circuit_breaker_stats()["state"] == "closed"


@pytest.mark.unit
class TestClientMisc:
    """Test cancellation, metadata, batch and construction."""

    def test_cancelled_client_sends_nothing(self, make_client, session) -> None:
        event = threading.Event()
        event.set()
        client = make_client(cancel_event=event)

        with pytest.raises(CancelledError):
            client.get("/Set")
        session.request.assert_not_called()

    def test_get_metadata_returns_raw_xml(self, make_client, session) -> None:
        session.request.return_value = make_response(200, text="<edmx:Edmx/>")
        client = make_client()

        assert client.get_metadata("/sap/opu/odata/sap/API_X") == "<edmx:Edmx/>"
        method, url, headers, _ = _sent(session)
        assert url == "https://example.test/sap/opu/odata/sap/API_X/$metadata"
        assert headers["Accept"] == "application/xml"

    def test_fetch_metadata_parses_the_document(self, make_client, session) -> None:
        session.request.return_value = make_response(200, text=(
            '<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">'
            '<edmx:DataServices><Schema Namespace="API_X">'
            '<EntityType Name="A_Item"><Key><PropertyRef Name="Id"/></Key>'
            '<Property Name="Id" Type="Edm.String" Nullable="false"/></EntityType>'
            '</Schema></edmx:DataServices></edmx:Edmx>'
        ))

        model = make_client().fetch_metadata("/sap/opu/odata/sap/API_X")

        assert model.schemas == ["API_X"]
        assert model.entity_types[0].keys == ["Id"]

    def test_v4_batch_round_trip(self, make_client, session) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(200, {
            "responses": [
                {"id": "1", "status": 200, "body": {"value": []}},
                {"id": "2", "status": 201, "body": {"id": "9"}},
            ]
        })
        client = make_client(dialect="v4", service_path="/svc")
        builder = BatchBuilder("v4").add_get("/Orders").add_post("/Orders", {"id": "9"})

        results = client.batch(builder)

        assert [r.status_code for r in results] == [200, 201]
        assert results[1].body == {"id": "9"}
        method, url, headers, _ = _sent(session)
        assert (method, url) == ("POST", "https://example.test/svc/$batch")
        assert headers["X-CSRF-Token"] == "tok"

    def test_v2_batch_uses_the_response_boundary(self, make_client, session) -> None:
        """The reply is split on the boundary the server announces, not the request one."""
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(
            202,
            text=(
                "--batchresponse_77\r\n"
                "Content-Type: application/http\r\n"
                "\r\n"
                "HTTP/1.1 200 OK\r\n"
                "Content-Type: application/json\r\n"
                "\r\n"
                '{"d": {"results": []}}\r\n'
                "--batchresponse_77--\r\n"
            ),
            headers={"Content-Type": "multipart/mixed; boundary=batchresponse_77"},
        )
        client = make_client(service_path="/svc")

        results = client.batch(BatchBuilder("v2").add_get("/Orders"))

        assert [r.status_code for r in results] == [200]
        assert results[0].body == {"d": {"results": []}}
        assert _sent(session)[2]["Content-Type"].startswith("multipart/mixed; boundary=batch_")

    def test_batch_is_not_retried(self, make_client, session, sleeps) -> None:
        session.head.return_value = make_response(200, headers={"X-CSRF-Token": "tok"})
        session.request.return_value = make_response(503, text="busy")
        client = make_client(dialect="v4", service_path="/svc", retries=3)

        with pytest.raises(ServerError):
            client.batch(BatchBuilder("v4").add_get("/Orders"))

        assert session.request.call_count == 1
        assert sleeps == []

    def test_base_url_is_required(self) -> None:
        with pytest.raises(ConfigurationError):
            ODataClient("")

    def test_auth_headers_are_sent(self, make_client, session) -> None:
        session.request.return_value = make_response(200, {"value": []})
        client = make_client(auth_provider=BasicAuthProvider("user", "pass"))

        client.get("/Set")

        assert _sent(session)[2]["Authorization"] == "Basic dXNlcjpwYXNz"
