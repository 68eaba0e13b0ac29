"""Builders for Burp XML exports used across the tests."""

import base64
from typing import Dict, Optional

EXPORT_TIME = "Wed Jan 06 11:27:54 CST 2021"
ITEM_TIME = "Wed Jan 06 11:26:17 CST 2021"

GET_REQUEST = b"GET /get?foo=bar HTTP/1.1\r\nHost: httpbin.org\r\nAccept: */*\r\n\r\n"
OK_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: application/json\r\n"
    b"Content-Length: 13\r\n"
    b"\r\n"
    b'{"foo":"bar"}'
)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def make_item(
    request: Optional[bytes] = GET_REQUEST,
    response: Optional[bytes] = OK_RESPONSE,
    *,
    encoded: bool = True,
    request_text: Optional[str] = None,
    response_text: Optional[str] = None,
    fields: Optional[Dict[str, Optional[str]]] = None,
    extra_xml: str = "",
) -> str:
    """
    One <item> in Burp's layout.

    ``fields`` overrides scalar fields; a None value drops the element.
    ``request_text`` / ``response_text`` put text into the blob verbatim.
    """
    values = {
        "time": ITEM_TIME,
        "url": "http://httpbin.org/get?foo=bar",
        "host": "httpbin.org",
        "port": "80",
        "protocol": "http",
        "method": "GET",
        "path": "/get?foo=bar",
        "extension": "null",
        "status": "200",
        "responselength": "508",
        "mimetype": "JSON",
        "comment": "",
    }
    if fields:
        values.update(fields)

    flag = "true" if encoded else "false"

    def blob(tag: str, data: Optional[bytes], text: Optional[str]) -> str:
        if text is None:
            if data is None:
                return ""
            text = b64(data) if encoded else data.decode("latin-1")
        return f'<{tag} base64="{flag}"><![CDATA[{text}]]></{tag}>'

    parts = ["<item>"]
    for tag in ("time", "url", "host", "port", "protocol", "method", "path", "extension"):
        if values.get(tag) is None:
            continue
        if tag == "host":
            parts.append(f'<host ip="184.72.216.47">{values[tag]}</host>')
        elif tag in ("url", "method", "path"):
            parts.append(f"<{tag}><![CDATA[{values[tag]}]]></{tag}>")
        else:
            parts.append(f"<{tag}>{values[tag]}</{tag}>")
    parts.append(blob("request", request, request_text))
    for tag in ("status", "responselength", "mimetype"):
        if values.get(tag) is not None:
            parts.append(f"<{tag}>{values[tag]}</{tag}>")
    parts.append(blob("response", response, response_text))
    if values.get("comment") is not None:
        parts.append(f"<comment>{values['comment']}</comment>")
    for tag, value in values.items():
        if tag not in _KNOWN and value is not None:
            parts.append(f"<{tag}>{value}</{tag}>")
    parts.append(extra_xml)
    parts.append("</item>")
    return "\n".join(parts)


_KNOWN = {
    "time", "url", "host", "port", "protocol", "method", "path", "extension",
    "status", "responselength", "mimetype", "comment",
}


# Prolog Burp writes at the top of every "Save items" export
BURP_DOCTYPE = """<!DOCTYPE items [
<!ELEMENT items (item*)>
<!ATTLIST items burpVersion CDATA "">
<!ATTLIST items exportTime CDATA "">
<!ELEMENT item (time, url, host, port, protocol, method, path, extension, request, status, responselength, mimetype, response, comment)>
<!ELEMENT time (#PCDATA)>
<!ELEMENT url (#PCDATA)>
<!ELEMENT host (#PCDATA)>
<!ATTLIST host ip CDATA "">
<!ELEMENT port (#PCDATA)>
<!ELEMENT protocol (#PCDATA)>
<!ELEMENT method (#PCDATA)>
<!ELEMENT path (#PCDATA)>
<!ELEMENT extension (#PCDATA)>
<!ELEMENT request (#PCDATA)>
<!ATTLIST request base64 (true|false) "false">
<!ELEMENT status (#PCDATA)>
<!ELEMENT responselength (#PCDATA)>
<!ELEMENT mimetype (#PCDATA)>
<!ELEMENT response (#PCDATA)>
<!ATTLIST response base64 (true|false) "false">
<!ELEMENT comment (#PCDATA)>
]>
"""


def export_header(version: str = "2020.12.1", doctype: bool = False) -> str:
    return (
        '<?xml version="1.0"?>\n'
        + (BURP_DOCTYPE if doctype else "")
        + f'<items burpVersion="{version}" exportTime="{EXPORT_TIME}">\n'
    )


def make_export(*items: str, version: str = "2020.12.1", doctype: bool = False) -> bytes:
    return (export_header(version, doctype) + "\n".join(items) + "\n</items>\n").encode("utf-8")
