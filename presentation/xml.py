"""WebDAV multistatus assembly."""

from typing import Dict, Iterable, Optional, Union

from flask import Response
from xml.etree.ElementTree import Element, SubElement, tostring, register_namespace


# CalDAV namespace constants
DAV_NS = 'DAV:'
CALDAV_NS = 'urn:ietf:params:xml:ns:caldav'
ICAL_NS = 'http://apple.com/ns/ical/'
CALSERVER_NS = 'http://calendarserver.org/ns/'

# Register namespaces for proper XML output
register_namespace('D', DAV_NS)
register_namespace('C', CALDAV_NS)
register_namespace('CS', CALSERVER_NS)
register_namespace('ICAL', ICAL_NS)

DAV_HEADER = '1, 2, calendar-access'
ALLOWED_METHODS = 'OPTIONS, PROPFIND, REPORT, GET, PUT, DELETE'

CALENDAR_CONTENT_TYPE = 'text/calendar; charset=utf-8; component=VEVENT'

STATUS_OK = 'HTTP/1.1 200 OK'

PropValue = Union[Element, str, None]


def dav_headers() -> Dict[str, str]:
    return {'DAV': DAV_HEADER, 'Allow': ALLOWED_METHODS}


def create_xml_response(root_element: Element) -> Response:
    """Serialize a multistatus tree as a 207 response."""
    xml_str = tostring(root_element, encoding='unicode', xml_declaration=False)
    full_xml = f'<?xml version="1.0" encoding="UTF-8"?>\n{xml_str}'

    return Response(
        full_xml,
        status=207,  # Multi-Status
        content_type='application/xml; charset=utf-8',
        headers={'DAV': DAV_HEADER}
    )


def create_propfind_response(href: str, properties: Dict[str, PropValue], status_code: str = STATUS_OK) -> Element:
    """One <response> with a single propstat.

    Element values are appended as-is; anything else becomes the text of an
    element named by the key.
    """
    response = Element(f'{{{DAV_NS}}}response')

    href_elem = SubElement(response, f'{{{DAV_NS}}}href')
    href_elem.text = href

    propstat = SubElement(response, f'{{{DAV_NS}}}propstat')
    prop = SubElement(propstat, f'{{{DAV_NS}}}prop')

    for prop_name, prop_value in properties.items():
        if isinstance(prop_value, Element):
            prop.append(prop_value)
        else:
            prop_elem = SubElement(prop, prop_name)
            if prop_value is not None:
                prop_elem.text = str(prop_value)

    status = SubElement(propstat, f'{{{DAV_NS}}}status')
    status.text = status_code

    return response


def build_multistatus(responses: Iterable[Element]) -> Element:
    multistatus = Element(f'{{{DAV_NS}}}multistatus')
    for response in responses:
        multistatus.append(response)
    return multistatus


def resourcetype(*tags: str) -> Element:
    """<resourcetype> with the given child tags (Clark notation)."""
    elem = Element(f'{{{DAV_NS}}}resourcetype')
    for tag in tags:
        SubElement(elem, tag)
    return elem


def collection_resourcetype() -> Element:
    return resourcetype(f'{{{DAV_NS}}}collection')


def calendar_resourcetype() -> Element:
    return resourcetype(f'{{{DAV_NS}}}collection', f'{{{CALDAV_NS}}}calendar')


def href_property(tag: str, href: str) -> Element:
    elem = Element(tag)
    SubElement(elem, f'{{{DAV_NS}}}href').text = href
    return elem


def supported_component_set() -> Element:
    comp_set = Element(f'{{{CALDAV_NS}}}supported-calendar-component-set')
    SubElement(comp_set, f'{{{CALDAV_NS}}}comp').set('name', 'VEVENT')
    return comp_set


def calendar_properties(calendar, include_ctag: bool = True) -> Dict[str, PropValue]:
    props: Dict[str, PropValue] = {
        f'{{{DAV_NS}}}resourcetype': calendar_resourcetype(),
        f'{{{DAV_NS}}}displayname': calendar.display_name,
        f'{{{ICAL_NS}}}calendar-color': calendar.color,
        f'{{{CALDAV_NS}}}supported-calendar-component-set': supported_component_set(),
    }
    if include_ctag:
        props[f'{{{CALSERVER_NS}}}getctag'] = calendar.ctag or '0'
    return props


def event_properties(event, calendar_data: Optional[bool] = False) -> Dict[str, PropValue]:
    props: Dict[str, PropValue] = {
        f'{{{DAV_NS}}}getetag': event.etag or '',
        f'{{{DAV_NS}}}getcontenttype': CALENDAR_CONTENT_TYPE,
    }
    if calendar_data:
        props[f'{{{CALDAV_NS}}}calendar-data'] = event.raw_ical
    return props
