"""$batch request assembly and response demultiplexing."""

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..errors import ConfigurationError, ProtocolError

logger = logging.getLogger(__name__)

_STATUS_LINE = re.compile(r"^HTTP/\d\.\d\s+(\d{3})(?:\s+(.*))?$", re.MULTILINE)
_BOUNDARY_PARAM = re.compile(r"boundary=\"?([^\";\s]+)\"?", re.IGNORECASE)
_BLANK_LINE = re.compile(r"\r?\n\r?\n")


@dataclass
class BatchOperation:
    """A single operation inside a batch."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class BatchResult:
    """Result of one operation in a batch response."""
    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statusCode": self.status_code,
            "headers": self.headers,
            "body": self.body,
        }


class BatchBuilder:
    """
    Fluent builder for OData $batch requests.

    v2 produces a multipart/mixed body, v4 a JSON envelope::

        builder = BatchBuilder("v4").add_get("/Orders").add_post("/Orders", {"id": "1"})
        request = builder.build()
    """

    def __init__(self, version: str = "v2"):
        if version not in ("v2", "v4"):
            raise ConfigurationError(f"Unsupported batch version: {version}", {"field": "version"})
        self.version = version
        self.operations: List[BatchOperation] = []

    @property
    def count(self) -> int:
        return len(self.operations)

    def add_get(self, path: str, headers: Optional[Dict[str, str]] = None) -> "BatchBuilder":
        return self._add("GET", path, None, headers)

    def add_post(self, path: str, body: Any, headers: Optional[Dict[str, str]] = None) -> "BatchBuilder":
        return self._add("POST", path, body, headers)

    def add_patch(self, path: str, body: Any, headers: Optional[Dict[str, str]] = None) -> "BatchBuilder":
        return self._add("PATCH", path, body, headers)

    def add_delete(self, path: str, headers: Optional[Dict[str, str]] = None) -> "BatchBuilder":
        return self._add("DELETE", path, None, headers)

    def _add(self, method: str, path: str, body: Any, headers: Optional[Dict[str, str]]) -> "BatchBuilder":
        self.operations.append(BatchOperation(method=method, url=path, headers=dict(headers or {}), body=body))
        return self

    def build(self) -> Dict[str, Any]:
        """
        Build the batch request.

        Returns:
            Dict with ``headers``, ``body`` and (v2 only) ``boundary``
        """
        if self.version == "v4":
            return self._build_v4()
        return self._build_v2()

    def _build_v2(self) -> Dict[str, Any]:
        boundary = f"batch_{uuid.uuid4().hex}"
        lines: List[str] = []

        for op in self.operations:
            lines.append(f"--{boundary}")
            lines.append("Content-Type: application/http")
            lines.append("Content-Transfer-Encoding: binary")
            lines.append("")
            lines.append(f"{op.method} {op.url} HTTP/1.1")
            for name, value in op.headers.items():
                lines.append(f"{name}: {value}")

            if op.body is not None:
                payload = op.body if isinstance(op.body, str) else json.dumps(op.body, separators=(",", ":"))
                lines.append("Content-Type: application/json")
                lines.append(f"Content-Length: {len(payload.encode('utf-8'))}")
                lines.append("")
                lines.append(payload)
            else:
                lines.append("")
            lines.append("")

        lines.append(f"--{boundary}--")
        return {
            "headers": {"Content-Type": f"multipart/mixed; boundary={boundary}"},
            "body": "\r\n".join(lines),
            "boundary": boundary,
        }

    def _build_v4(self) -> Dict[str, Any]:
        requests = []
        for index, op in enumerate(self.operations, start=1):
            entry: Dict[str, Any] = {
                "id": str(index),
                "method": op.method,
                "url": op.url,
                "headers": dict(op.headers),
            }
            if op.body is not None:
                entry["headers"].setdefault("Content-Type", "application/json")
                entry["body"] = op.body
            requests.append(entry)

        return {
            "headers": {"Content-Type": "application/json", "Accept": "application/json"},
            "body": json.dumps({"requests": requests}),
            "boundary": None,
        }


def parse_v2_batch_response(text: str, boundary: str) -> List[BatchResult]:
    """
    Split a multipart/mixed batch response into per-operation results.

    Parts without an HTTP status line are skipped; nested changeset parts are
    expanded in place.
    """
    results: List[BatchResult] = []
    if not text:
        return results

    for part in text.split(f"--{boundary}"):
        stripped = part.strip()
        if not stripped or stripped == "--":
            continue

        nested = _nested_boundary(part)
        if nested and nested != boundary:
            results.extend(parse_v2_batch_response(part, nested))
            continue

        result = _parse_http_part(part)
        if result is not None:
            results.append(result)

    return results


def boundary_from_content_type(content_type: Optional[str]) -> Optional[str]:
    """Boundary parameter of a multipart Content-Type header, if any."""
    match = _BOUNDARY_PARAM.search(content_type or "")
    return match.group(1) if match else None


def _nested_boundary(part: str) -> Optional[str]:
    head = _BLANK_LINE.split(part.lstrip("\r\n"), maxsplit=1)[0]
    if "multipart/mixed" not in head.lower():
        return None
    match = _BOUNDARY_PARAM.search(head)
    return match.group(1) if match else None


def _parse_http_part(part: str) -> Optional[BatchResult]:
    match = _STATUS_LINE.search(part)
    if not match:
        return None

    status = int(match.group(1))
    rest = part[match.end():]
    if rest.startswith(("\r\n\r\n", "\n\n")):
        header_block, raw_body = "", rest.strip()
    else:
        sections = _BLANK_LINE.split(rest.lstrip("\r\n"), maxsplit=1)
        header_block = sections[0]
        raw_body = sections[1].strip() if len(sections) > 1 else ""

    headers = _parse_headers(header_block)

    body: Any = None
    if status != 204 and raw_body:
        try:
            body = json.loads(raw_body)
        except ValueError:
            body = raw_body

    return BatchResult(status_code=status, body=body, headers=headers)


def _parse_headers(block: str) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in block.splitlines():
        if ":" in line:
            name, _, value = line.partition(":")
            headers[name.strip()] = value.strip()
    return headers


def parse_v4_batch_response(body: Union[str, bytes, Dict[str, Any]]) -> List[BatchResult]:
    """Map the ``responses[]`` array of a JSON batch response to results."""
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON batch response: {e}") from e

    if not isinstance(body, dict):
        raise ProtocolError("JSON batch response must be an object")

    results = []
    for response in body.get("responses", []):
        status = int(response.get("status", 0))
        results.append(BatchResult(
            id=response.get("id"),
            status_code=status,
            headers=response.get("headers") or {},
            body=None if status == 204 else response.get("body"),
        ))
    return results
