"""Request body encoders.

Every encoder returns ``(content, content_type)`` and raises
:class:`~httpchain.BodyEncodingError` when the input cannot be encoded.
"""

from __future__ import annotations

import io
import json as _json
import os
import re
import typing
import xml.etree.ElementTree as ET
from urllib.parse import urlencode

import httpx

from ._exceptions import BodyEncodingError

__all__ = [
    "CONTENT_TYPE_FORM_URLENCODED",
    "CONTENT_TYPE_JSON",
    "CONTENT_TYPE_TEXT_EVENT_STREAM",
    "CONTENT_TYPE_XML",
    "MultipartFile",
    "encode_custom",
    "encode_form_urlencoded",
    "encode_json",
    "encode_multipart_form",
    "encode_raw",
    "encode_xml",
]

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_XML = "application/xml"
CONTENT_TYPE_FORM_URLENCODED = "application/x-www-form-urlencoded"
CONTENT_TYPE_TEXT_EVENT_STREAM = "text/event-stream"

Encoded = typing.Tuple[bytes, typing.Optional[str]]


def _to_bytes(content: typing.Any) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, (bytearray, memoryview)):
        return bytes(content)
    if isinstance(content, str):
        return content.encode("utf-8")
    if hasattr(content, "read"):
        return _to_bytes(content.read())
    raise TypeError(
        f"Expected bytes, str or a binary file-like object, got {type(content).__name__}"
    )


def encode_raw(content: bytes | bytearray | str) -> Encoded:
    try:
        return _to_bytes(content), None
    except TypeError as exc:
        raise BodyEncodingError(str(exc)) from exc


def encode_custom(producer: typing.Callable[[], typing.Any]) -> Encoded:
    """Run ``producer`` and coerce its result to bytes.

    Errors raised by ``producer`` propagate unchanged.
    """
    content = producer()
    try:
        return _to_bytes(content), None
    except TypeError as exc:
        raise BodyEncodingError(str(exc)) from exc


def encode_json(data: typing.Any) -> Encoded:
    try:
        body = _json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise BodyEncodingError(f"Could not encode JSON body: {exc}") from exc
    return body.encode("utf-8"), CONTENT_TYPE_JSON


def _build_element(parent: ET.Element, tag: str, value: typing.Any) -> None:
    if isinstance(value, (list, tuple)):
        for item in value:
            _build_element(parent, tag, item)
        return

    child = ET.SubElement(parent, tag)
    if isinstance(value, typing.Mapping):
        for key, item in value.items():
            _build_element(child, str(key), item)
    elif value is None:
        pass
    elif isinstance(value, bool):
        child.text = "true" if value else "false"
    elif isinstance(value, (str, int, float)):
        child.text = str(value)
    else:
        raise TypeError(f"Unsupported XML value of type {type(value).__name__}")


def encode_xml(data: typing.Any, root: str = "root") -> Encoded:
    """Encode an :class:`~xml.etree.ElementTree.Element`, or a mapping as
    child elements of ``<root>``."""
    try:
        if isinstance(data, ET.ElementTree):
            element = data.getroot()
        elif isinstance(data, ET.Element):
            element = data
        elif isinstance(data, typing.Mapping):
            element = ET.Element(root)
            for key, value in data.items():
                _build_element(element, str(key), value)
        else:
            raise TypeError(
                f"Expected an Element or a mapping, got {type(data).__name__}"
            )
        body = ET.tostring(element, encoding="utf-8", xml_declaration=False)
    except (TypeError, ValueError) as exc:
        raise BodyEncodingError(f"Could not encode XML body: {exc}") from exc
    return body, CONTENT_TYPE_XML


def encode_form_urlencoded(data: typing.Any) -> Encoded:
    if isinstance(data, httpx.QueryParams):
        pairs = data.multi_items()
    elif isinstance(data, typing.Mapping):
        pairs = []
        for key, value in data.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, str(item)) for item in value)
            else:
                pairs.append((key, str(value)))
    else:
        pairs = list(data)
    return urlencode(pairs, doseq=True).encode("ascii"), CONTENT_TYPE_FORM_URLENCODED


class MultipartFile:
    """A file part of a multipart form.

    Build one with :meth:`from_path` (the file is opened when the body is
    encoded, and its base name is sent as the file name) or with
    :meth:`from_reader`.
    """

    def __init__(
        self,
        field_name: str,
        *,
        file_path: str | os.PathLike[str] | None = None,
        file_name: str | None = None,
        reader: typing.IO[bytes] | None = None,
        content_type: str | None = None,
    ) -> None:
        if file_path is None and reader is None:
            raise ValueError("MultipartFile needs a file path or a reader.")
        self.field_name = field_name
        self.file_path = file_path
        self.file_name = file_name
        self.reader = reader
        self.content_type = content_type

    @classmethod
    def from_path(
        cls, field_name: str, file_path: str | os.PathLike[str]
    ) -> MultipartFile:
        return cls(field_name, file_path=file_path)

    @classmethod
    def from_reader(
        cls,
        field_name: str,
        file_name: str,
        reader: typing.IO[bytes] | bytes,
        content_type: str | None = None,
    ) -> MultipartFile:
        if isinstance(reader, (bytes, bytearray)):
            reader = io.BytesIO(reader)
        return cls(
            field_name, file_name=file_name, reader=reader, content_type=content_type
        )

    def read(self) -> tuple[str, bytes]:
        """Return ``(file_name, content)``."""
        if self.reader is not None:
            return self.file_name or self.field_name, _to_bytes(self.reader.read())

        assert self.file_path is not None
        with open(self.file_path, "rb") as f:
            content = f.read()
        return os.path.basename(os.fspath(self.file_path)), content

    def __repr__(self) -> str:
        source = self.file_path if self.file_path is not None else self.file_name
        return f"<MultipartFile {self.field_name}={source!r}>"


# Parameter escaping httpx applies to the parts it lays out itself.
_FORM_PARAM_ESCAPES = {'"': "%22", "\\": "\\\\"}
_FORM_PARAM_ESCAPES.update(
    {chr(c): f"%{c:02X}" for c in range(0x20) if c != 0x1B}
)
_FORM_PARAM_PATTERN = re.compile(
    "|".join(re.escape(c) for c in _FORM_PARAM_ESCAPES)
)


def _form_param(name: str, value: str) -> str:
    escaped = _FORM_PARAM_PATTERN.sub(
        lambda match: _FORM_PARAM_ESCAPES[match.group(0)], value
    )
    return f'{name}="{escaped}"'


def encode_multipart_form(
    fields: typing.Mapping[str, typing.Any] | None,
    files: typing.Sequence[MultipartFile] = (),
) -> Encoded:
    data = {key: str(value) for key, value in (fields or {}).items()}
    parts = []
    try:
        for file in files:
            file_name, content = file.read()
            if file.content_type is not None:
                parts.append((file.field_name, (file_name, content, file.content_type)))
            else:
                parts.append((file.field_name, (file_name, content)))
    except (OSError, TypeError) as exc:
        raise BodyEncodingError(f"Could not read multipart file: {exc}") from exc

    if not parts:
        # httpx only switches to multipart encoding when files are present.
        boundary = os.urandom(16).hex()
        chunks = []
        for key, value in data.items():
            disposition = "form-data; " + _form_param("name", key)
            chunks.append(
                f"--{boundary}\r\nContent-Disposition: {disposition}"
                f"\r\n\r\n{value}\r\n"
            )
        chunks.append(f"--{boundary}--\r\n")
        content_type = f"multipart/form-data; boundary={boundary}"
        return "".join(chunks).encode("utf-8"), content_type

    # Let httpx lay out the parts; the URL is never contacted.
    request = httpx.Request("POST", "http://localhost/", data=data, files=parts)
    return request.read(), request.headers["Content-Type"]
