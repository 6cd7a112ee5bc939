from datetime import datetime, timezone

from lxml import etree

TIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def parse_xml(xml):
    """
    Parses untrusted XML without resolving entities or touching the
    network. Returns None when the document is not well formed.
    """
    if isinstance(xml, str):
        xml = xml.encode('utf-8')
    if not xml:
        return None
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(xml, parser=parser)
    except (etree.XMLSyntaxError, ValueError):
        return None


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(dt):
    return dt.strftime(TIME_FORMAT)


def reference_string(reference_id):
    return '_{}'.format(reference_id)


def text_or_none(element):
    """Stripped text of an element, None when missing or blank."""
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None
