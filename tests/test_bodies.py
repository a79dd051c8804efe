import io
import xml.etree.ElementTree as ET

import httpx
import pytest

import httpchain
from httpchain._bodies import (
    encode_custom,
    encode_form_urlencoded,
    encode_json,
    encode_multipart_form,
    encode_raw,
    encode_xml,
)


def test_raw_accepts_text_and_bytes() -> None:
    assert encode_raw(b"\x00\x01") == (b"\x00\x01", None)
    assert encode_raw("héllo") == ("héllo".encode("utf-8"), None)
    assert encode_raw(io.BytesIO(b"from a file")) == (b"from a file", None)


def test_raw_rejects_other_types() -> None:
    with pytest.raises(httpchain.BodyEncodingError):
        encode_raw(123)  # type: ignore[arg-type]


def test_json_is_compact() -> None:
    content, content_type = encode_json({"name": "ada", "tags": [1, 2]})
    assert content == b'{"name":"ada","tags":[1,2]}'
    assert content_type == "application/json"


def test_json_unencodable() -> None:
    with pytest.raises(httpchain.BodyEncodingError):
        encode_json({"when": object()})


def test_xml_from_mapping() -> None:
    content, content_type = encode_xml(
        {"name": "ada", "age": 36, "langs": ["en", "fr"], "admin": True}, "user"
    )
    assert content == (
        b"<user><name>ada</name><age>36</age>"
        b"<langs>en</langs><langs>fr</langs><admin>true</admin></user>"
    )
    assert content_type == "application/xml"


def test_xml_from_element() -> None:
    element = ET.Element("note", attrib={"lang": "en"})
    element.text = "hi"
    content, _ = encode_xml(element)
    assert content == b'<note lang="en">hi</note>'

    content, _ = encode_xml(ET.ElementTree(element))
    assert content == b'<note lang="en">hi</note>'


def test_xml_unsupported() -> None:
    with pytest.raises(httpchain.BodyEncodingError):
        encode_xml(["not", "a", "mapping"])

    with pytest.raises(httpchain.BodyEncodingError):
        encode_xml({"value": object()})


def test_form_urlencoded() -> None:
    content, content_type = encode_form_urlencoded({"q": "a b", "tag": ["x", "y"]})
    assert content == b"q=a+b&tag=x&tag=y"
    assert content_type == "application/x-www-form-urlencoded"


def test_form_urlencoded_from_query_params() -> None:
    content, _ = encode_form_urlencoded(httpx.QueryParams([("a", "1"), ("a", "2")]))
    assert content == b"a=1&a=2"


def test_custom_producer() -> None:
    assert encode_custom(lambda: "made") == (b"made", None)


def test_custom_producer_error_propagates() -> None:
    def fail() -> bytes:
        raise LookupError("no source")

    with pytest.raises(LookupError, match="no source"):
        encode_custom(fail)


class TestMultipart:
    def test_fields_only(self) -> None:
        content, content_type = encode_multipart_form({"name": "ada", "n": 1})
        assert content_type.startswith("multipart/form-data; boundary=")
        boundary = content_type.split("boundary=")[1]

        assert content.startswith(f"--{boundary}\r\n".encode())
        assert content.endswith(f"--{boundary}--\r\n".encode())
        assert b'Content-Disposition: form-data; name="name"\r\n\r\nada\r\n' in content
        assert b'name="n"\r\n\r\n1\r\n' in content

    def test_field_names_are_escaped(self) -> None:
        content, _ = encode_multipart_form({'a"b': "1", "x\r\nX-Injected: y": "2"})

        assert b'Content-Disposition: form-data; name="a%22b"\r\n\r\n1\r\n' in content
        assert b'name="x%0D%0AX-Injected: y"\r\n\r\n2\r\n' in content
        assert b"\r\nX-Injected" not in content

    def test_field_names_escaped_like_httpx(self) -> None:
        file = httpchain.MultipartFile.from_reader("upload", "notes.txt", b"hello")
        with_file, _ = encode_multipart_form({'a"b': "1"}, [file])
        fields_only, _ = encode_multipart_form({'a"b': "1"})

        assert b'name="a%22b"' in with_file
        assert b'name="a%22b"' in fields_only

    def test_reader_file(self) -> None:
        file = httpchain.MultipartFile.from_reader(
            "upload", "notes.txt", b"hello", content_type="text/plain"
        )
        content, content_type = encode_multipart_form({"title": "t"}, [file])

        assert content_type.startswith("multipart/form-data; boundary=")
        assert b'name="title"' in content
        assert b'name="upload"; filename="notes.txt"' in content
        assert b"Content-Type: text/plain" in content
        assert b"hello" in content

    def test_path_file(self, tmp_path) -> None:
        path = tmp_path / "report.csv"
        path.write_bytes(b"a,b\n1,2\n")
        file = httpchain.MultipartFile.from_path("report", path)

        assert file.read() == ("report.csv", b"a,b\n1,2\n")
        content, _ = encode_multipart_form(None, [file])
        assert b'filename="report.csv"' in content
        assert b"a,b\n1,2\n" in content

    def test_missing_file(self, tmp_path) -> None:
        file = httpchain.MultipartFile.from_path("report", tmp_path / "missing.csv")
        with pytest.raises(httpchain.BodyEncodingError):
            encode_multipart_form({}, [file])

    def test_needs_a_source(self) -> None:
        with pytest.raises(ValueError):
            httpchain.MultipartFile("upload")
