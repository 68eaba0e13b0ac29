"""Tests for burp_history/container.py"""

import io
from datetime import datetime

import pytest

from burp_history.container import (
    HistoryReader,
    draft_from_raw,
    iter_chunks,
    iter_raw_entries,
    parse_export_time,
)
from burp_history.errors import ContainerError
from burp_history.models import Protocol, Severity, Stage, TruncationDiagnostic

from helpers import GET_REQUEST, b64, export_header, make_export, make_item


def _read(data: bytes, chunk_size: int = 64):
    reader = HistoryReader(data, chunk_size=chunk_size)
    return reader, list(reader)


class TestIterChunks:
    def test_bytes_are_sliced(self):
        assert list(iter_chunks(b"abcdefg", 3)) == [b"abc", b"def", b"g"]

    def test_file_object(self):
        assert list(iter_chunks(io.BytesIO(b"abcdef"), 4)) == [b"abcd", b"ef"]

    def test_iterable_skips_empty_chunks(self):
        assert list(iter_chunks([b"ab", b"", b"cd"])) == [b"ab", b"cd"]

    def test_text_file_rejected(self):
        with pytest.raises(TypeError):
            list(iter_chunks(io.StringIO("<items/>")))

    def test_iterable_of_str_rejected(self):
        with pytest.raises(TypeError):
            list(iter_chunks(["<items/>"]))


class TestParseExportTime:
    def test_burp_format_drops_zone(self):
        assert parse_export_time("Wed Jan 06 11:27:54 CST 2021") == datetime(2021, 1, 6, 11, 27, 54)

    def test_without_zone(self):
        assert parse_export_time("Wed Jan 06 11:27:54 2021") == datetime(2021, 1, 6, 11, 27, 54)

    def test_iso_format(self):
        assert parse_export_time("2021-01-06T11:27:54") == datetime(2021, 1, 6, 11, 27, 54)

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_export_time("yesterday")


class TestHistoryReader:
    def test_export_info(self):
        reader, entries = _read(make_export(make_item(), version="2023.1"))
        assert len(entries) == 1
        assert reader.export_info.burp_version == "2023.1"
        assert reader.export_info.export_time == datetime(2021, 1, 6, 11, 27, 54)
        assert reader.diagnostics == []
        assert reader.truncation is None
        assert reader.entries_completed == 1

    def test_fields_and_blobs(self):
        _, (entry,) = _read(make_export(make_item()))
        assert entry.field_text["host"] == "httpbin.org"
        assert entry.field_text["mime_type"] == "JSON"
        assert entry.field_text["response_length"] == "508"
        assert entry.host_ip == "184.72.216.47"
        assert entry.request.encoded is True
        assert entry.request.data == b64(GET_REQUEST).encode("ascii")
        assert entry.diagnostics == []

    def test_entry_offsets_increase(self):
        _, entries = _read(make_export(make_item(), make_item(), make_item()))
        offsets = [entry.offset for entry in entries]
        assert offsets == sorted(offsets)
        assert len(set(offsets)) == 3

    def test_results_independent_of_chunk_size(self):
        data = make_export(make_item(), make_item(fields={"host": "example.com"}))
        _, small = _read(data, chunk_size=1)
        _, large = _read(data, chunk_size=1 << 20)
        assert [e.field_text for e in small] == [e.field_text for e in large]
        assert [e.offset for e in small] == [e.offset for e in large]

    def test_empty_export(self):
        reader, entries = _read(b'<?xml version="1.0"?><items burpVersion="1" exportTime=""></items>')
        assert entries == []
        assert reader.truncation is None
        assert any("invalid exportTime" in d.message for d in reader.diagnostics)

    def test_missing_root_attributes(self):
        reader, _ = _read(b"<items></items>")
        assert reader.export_info.burp_version is None
        assert len(reader.diagnostics) == 2

    def test_unknown_fields_kept_in_extra(self):
        _, (entry,) = _read(make_export(make_item(fields={"notes": "seen twice"})))
        assert entry.extra == {"notes": "seen twice"}

    def test_aliases(self):
        item = make_item(fields={"mimetype": None, "mimeType": "HTML", "color": "red"})
        _, (entry,) = _read(make_export(item))
        assert entry.field_text["mime_type"] == "HTML"
        assert entry.field_text["highlight"] == "red"

    def test_duplicate_field_keeps_first(self):
        _, (entry,) = _read(make_export(make_item(extra_xml="<host>other.com</host>")))
        assert entry.field_text["host"] == "httpbin.org"
        assert len(entry.diagnostics) == 1
        assert entry.diagnostics[0].stage == Stage.CONTAINER
        assert "duplicate" in entry.diagnostics[0].message

    def test_missing_base64_attribute_is_plain(self):
        item = make_item(request=None, response=None, extra_xml="<request><![CDATA[GET / HTTP/1.1]]></request>")
        _, (entry,) = _read(make_export(item))
        assert entry.request.encoded is False
        assert entry.request.data == b"GET / HTTP/1.1"

    def test_invalid_base64_attribute(self):
        item = make_item(request=None, extra_xml='<request base64="maybe">abc</request>')
        _, (entry,) = _read(make_export(item))
        assert entry.request.encoded is False
        assert any("invalid base64 attribute" in d.message for d in entry.diagnostics)

    def test_nested_element_inside_field_skipped(self):
        item = make_item(fields={"comment": None}, extra_xml="<comment>a<b>bold</b>c</comment>")
        _, (entry,) = _read(make_export(item))
        assert entry.field_text["comment"] == "ac"
        assert any("unexpected <b>" in d.message for d in entry.diagnostics)

    def test_unexpected_element_under_root(self):
        data = make_export(make_item(), "<note><item>inner</item></note>", make_item())
        reader, entries = _read(data)
        assert len(entries) == 2
        assert len(reader.diagnostics) == 1
        assert "<note>" in reader.diagnostics[0].message

    def test_wrong_root_element(self):
        with pytest.raises(ContainerError):
            _read(b"<history><item></item></history>")

    def test_iterate_once(self):
        reader = HistoryReader(make_export(make_item()))
        list(reader)
        with pytest.raises(ContainerError):
            iter(reader)

    def test_entity_declarations_rejected(self):
        data = (
            b'<?xml version="1.0"?>\n'
            b'<!DOCTYPE items [<!ENTITY boom "boom">]>\n'
            b"<items><item><host>&boom;</host></item></items>"
        )
        with pytest.raises(ContainerError):
            _read(data)

    def test_burp_doctype_prolog(self):
        plain = make_item(request=None, extra_xml="<request><![CDATA[GET / HTTP/1.1]]></request>")
        reader, entries = _read(make_export(make_item(), plain, doctype=True))

        assert len(entries) == 2
        assert reader.diagnostics == []
        assert reader.truncation is None
        assert reader.export_info.burp_version == "2020.12.1"
        assert entries[0].request.encoded is True
        assert entries[0].diagnostics == []
        # ATTLIST default base64="false" applies to the bare <request>
        assert entries[1].request.encoded is False
        assert entries[1].request.data == b"GET / HTTP/1.1"
        assert entries[1].diagnostics == []

    def test_iter_raw_entries(self):
        entries = list(iter_raw_entries(make_export(make_item(), make_item())))
        assert len(entries) == 2


class TestTruncation:
    def test_cut_between_entries(self):
        data = make_export(make_item(), make_item())
        cut = data[: data.rindex(b"</items>")]
        reader, entries = _read(cut)
        assert len(entries) == 2
        assert isinstance(reader.truncation, TruncationDiagnostic)
        assert reader.truncation.entries_completed == 2
        assert reader.truncation.severity == Severity.WARNING
        assert reader.truncation.stage == Stage.CONTAINER

    def test_cut_inside_entry(self):
        data = make_export(make_item(), make_item(), make_item())
        third = data.index(b"<item>", data.index(b"<item>", data.index(b"<item>") + 1) + 1)
        cut = data[: third + 40]
        reader, entries = _read(cut)
        assert len(entries) == 2
        assert reader.truncation.entries_completed == 2
        assert f"byte {third}" in reader.truncation.message

    def test_cut_inside_cdata(self):
        data = make_export(make_item())
        cut = data[: data.index(b"<![CDATA[") + 15]
        reader, entries = _read(cut)
        assert entries == []
        assert reader.truncation.entries_completed == 0

    def test_cut_before_root_is_fatal(self):
        with pytest.raises(ContainerError):
            _read(export_header().encode("utf-8")[:30])

    def test_empty_stream_is_fatal(self):
        with pytest.raises(ContainerError):
            _read(b"")

    def test_junk_after_root_is_fatal(self):
        with pytest.raises(ContainerError):
            _read(make_export(make_item()) + b"<items></items>")

    def test_mismatched_tag_is_fatal(self):
        data = make_export(make_item(), make_item())
        broken = data.replace(b"</item>", b"</itme>", 1)
        reader = HistoryReader(broken, chunk_size=64)
        with pytest.raises(ContainerError) as exc:
            list(reader)
        assert exc.value.byte_offset is not None


class TestDraftFromRaw:
    def _draft(self, **fields):
        _, (raw,) = _read(make_export(make_item(fields=fields)))
        return draft_from_raw(raw)

    def test_typed_fields(self):
        draft = self._draft()
        assert draft.timestamp == datetime(2021, 1, 6, 11, 26, 17)
        assert draft.url == "http://httpbin.org/get?foo=bar"
        assert draft.host == "httpbin.org"
        assert draft.port == 80
        assert draft.protocol == Protocol.HTTP
        assert draft.method == "GET"
        assert draft.path == "/get?foo=bar"
        assert draft.extension is None
        assert draft.status == 200
        assert draft.response_length == 508
        assert draft.mime_type == "JSON"
        assert draft.comment is None
        assert draft.diagnostics == []
        assert draft.source_offset is not None

    def test_invalid_port(self):
        draft = self._draft(port="eighty")
        assert draft.port is None
        assert draft.diagnostics[0].severity == Severity.WARNING
        assert "invalid port" in draft.diagnostics[0].message

    def test_status_out_of_range(self):
        draft = self._draft(status="1000")
        assert draft.status is None
        assert "out of range" in draft.diagnostics[0].message

    def test_unknown_protocol(self):
        draft = self._draft(protocol="gopher")
        assert draft.protocol is None
        assert "unknown protocol" in draft.diagnostics[0].message

    def test_protocol_case_insensitive(self):
        assert self._draft(protocol="HTTPS").protocol == Protocol.HTTPS

    def test_invalid_time(self):
        draft = self._draft(time="sometime")
        assert draft.timestamp is None
        assert len(draft.diagnostics) == 1

    def test_extension_kept(self):
        assert self._draft(extension="php").extension == "php"

    def test_highlight(self):
        assert self._draft(highlight="red").highlight == "red"
