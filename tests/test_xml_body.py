"""Tests for XML <-> dict conversion.

Tests cover:
- xml_to_dict: leaves, namespaces, attributes, force_list, empty elements,
  Azure queue response shapes
- dict_to_xml: envelopes, attributes, repeated siblings, error cases
"""

import xml.etree.ElementTree as ET

import pytest

from restbind.xml_body import dict_to_xml, xml_to_dict


class TestXmlToDict:
    """Element trees become nested dicts."""

    def test_leaves_are_strings(self) -> None:
        result = xml_to_dict(b"<Root><Name>q1</Name><Count>3</Count></Root>")
        assert result == {"Root": {"Name": "q1", "Count": "3"}}

    def test_empty_element_is_none(self) -> None:
        assert xml_to_dict(b"<Root><Marker/><Prefix>  </Prefix></Root>") == {
            "Root": {"Marker": None, "Prefix": None}
        }

    def test_empty_root_is_none(self) -> None:
        assert xml_to_dict(b"<QueueMessagesList />") == {"QueueMessagesList": None}

    def test_repeated_tags_become_list(self) -> None:
        result = xml_to_dict(b"<Root><A>1</A><B>2</B><A>3</A></Root>")
        assert result == {"Root": {"A": ["1", "3"], "B": "2"}}

    def test_force_list_single_child(self) -> None:
        result = xml_to_dict(b"<Root><Queue>a</Queue><Other>b</Other></Root>", {"Queue"})
        assert result == {"Root": {"Queue": ["a"], "Other": "b"}}

    def test_namespaces_dropped(self) -> None:
        xml = (
            b'<q:Root xmlns:q="http://schemas.example/queue" xmlns="http://default">'
            b"<q:Name>val</q:Name><Url>u</Url></q:Root>"
        )
        assert xml_to_dict(xml) == {"Root": {"Name": "val", "Url": "u"}}

    def test_attributes(self) -> None:
        result = xml_to_dict(b'<Root><Tag id="7">text</Tag><Only a="1"/></Root>')
        assert result == {"Root": {"Tag": {"@id": "7", "#text": "text"}, "Only": {"@a": "1"}}}

    def test_namespaced_attribute_dropped(self) -> None:
        xml = (
            b'<Root xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">'
            b'<Value xsi:nil="true"/></Root>'
        )
        assert xml_to_dict(xml) == {"Root": {"Value": None}}

    def test_list_queues_response(self) -> None:
        xml = (
            b'<?xml version="1.0" encoding="utf-8"?>'
            b'<EnumerationResults AccountName="http://myaccount.queue.core.windows.net/">'
            b"<Prefix>q</Prefix><MaxResults>3</MaxResults>"
            b"<Queues>"
            b"<Queue><Name>q1</Name><Url>http://myaccount.queue.core.windows.net/q1</Url></Queue>"
            b"<Queue><Name>q2</Name><Url>http://myaccount.queue.core.windows.net/q2</Url></Queue>"
            b"</Queues>"
            b"<NextMarker/>"
            b"</EnumerationResults>"
        )
        root = xml_to_dict(xml, {"Queue"})["EnumerationResults"]
        assert root["@AccountName"] == "http://myaccount.queue.core.windows.net/"
        assert root["Prefix"] == "q"
        assert [q["Name"] for q in root["Queues"]["Queue"]] == ["q1", "q2"]
        assert root["NextMarker"] is None

    def test_malformed(self) -> None:
        with pytest.raises(ET.ParseError):
            xml_to_dict(b"<Root><Open></Root>")

    def test_empty_bytes(self) -> None:
        with pytest.raises(ET.ParseError):
            xml_to_dict(b"")


class TestDictToXml:
    """Dicts become UTF-8 XML with a declaration."""

    def test_message_envelope(self) -> None:
        result = dict_to_xml({"QueueMessage": {"MessageText": "hello"}})
        assert result.startswith(b"<?xml")
        root = ET.fromstring(result)
        assert root.tag == "QueueMessage"
        assert root.find("MessageText").text == "hello"

    def test_escaping(self) -> None:
        result = dict_to_xml({"QueueMessage": {"MessageText": "<a & b>"}})
        assert b"&lt;a &amp; b&gt;" in result
        assert ET.fromstring(result).find("MessageText").text == "<a & b>"

    def test_attributes_and_text(self) -> None:
        root = ET.fromstring(dict_to_xml({"Root": {"Tag": {"@id": "7", "#text": "x"}}}))
        tag = root.find("Tag")
        assert tag.get("id") == "7"
        assert tag.text == "x"

    def test_list_as_siblings(self) -> None:
        root = ET.fromstring(dict_to_xml({"Root": {"Id": [1, 2, 3]}}))
        assert [e.text for e in root.findall("Id")] == ["1", "2", "3"]

    def test_none_and_bool(self) -> None:
        root = ET.fromstring(dict_to_xml({"Root": {"Empty": None, "Flag": True}}))
        assert root.find("Empty").text is None
        assert root.find("Flag").text == "true"

    def test_scalar_root(self) -> None:
        assert ET.fromstring(dict_to_xml({"Name": "q1"})).text == "q1"

    def test_non_ascii_utf8(self) -> None:
        result = dict_to_xml({"M": "héllo"})
        assert "héllo".encode("utf-8") in result

    @pytest.mark.parametrize("data", [{}, {"A": 1, "B": 2}, "text"])
    def test_requires_single_root(self, data) -> None:
        with pytest.raises(ValueError, match="exactly one root key"):
            dict_to_xml(data)
