"""CalDAV route handlers for Almanac CalDAV Server."""

import logging
from typing import List, Optional
from urllib.parse import quote, unquote

from flask import request, Response
import xml.etree.ElementTree as ET

from infrastructure import parse_datetime
from .auth import requires_auth
from .xml import (
    DAV_NS, CALDAV_NS, dav_headers, create_xml_response, create_propfind_response,
    build_multistatus, collection_resourcetype, href_property, calendar_properties,
    event_properties
)


CALDAV_ROOT = '/api/caldav/'
CALENDAR_HOME = f'{CALDAV_ROOT}calendars/'

logger = logging.getLogger(__name__)


def calendar_href(calendar_id: str) -> str:
    return f'{CALENDAR_HOME}{calendar_id}/'


def event_href(calendar_id: str, uid: str) -> str:
    return f"{calendar_href(calendar_id)}{quote(uid, safe='')}.ics"


def uid_from_href(href: str) -> Optional[str]:
    """Recover the uid from ``.../<uid>.ics``; None for anything else."""
    name = href.strip().rstrip('/').rsplit('/', 1)[-1]
    if not name.endswith('.ics') or len(name) <= len('.ics'):
        return None
    return unquote(name[:-len('.ics')])


def parse_depth_header() -> int:
    """Parse Depth header from request; infinity is served as 1."""
    depth = request.headers.get('Depth', '0').strip().lower()
    if depth == 'infinity':
        return 1
    try:
        return int(depth)
    except (ValueError, TypeError):
        return 0


def options_response() -> Response:
    response = Response(status=200, headers=dav_headers())
    response.headers['Content-Length'] = '0'
    return response


def _parse_report_body(body: bytes):
    if not body or not body.strip():
        return None
    return ET.fromstring(body)


def _time_range(root) -> tuple:
    time_range = root.find(f'.//{{{CALDAV_NS}}}time-range')
    if time_range is None:
        return None, None
    start = time_range.get('start')
    end = time_range.get('end')
    return (
        parse_datetime(start) if start else None,
        parse_datetime(end) if end else None
    )


def _requested_hrefs(root) -> List[str]:
    return [elem.text.strip() for elem in root.findall(f'{{{DAV_NS}}}href') if elem.text]


def register_caldav_routes(app, caldav_service):
    """Register CalDAV protocol routes."""

    # Principal
    @app.route(CALDAV_ROOT, methods=['OPTIONS', 'PROPFIND'])
    def principal():
        if request.method == 'OPTIONS':
            return options_response()
        return propfind_principal()

    @requires_auth
    def propfind_principal():
        depth = parse_depth_header()
        config = app.config['CONFIG']

        principal_props = {
            f'{{{DAV_NS}}}resourcetype': collection_resourcetype(),
            f'{{{DAV_NS}}}displayname': config.caldav.display_name,
            f'{{{DAV_NS}}}current-user-principal': href_property(f'{{{DAV_NS}}}current-user-principal', CALDAV_ROOT),
            f'{{{CALDAV_NS}}}calendar-home-set': href_property(f'{{{CALDAV_NS}}}calendar-home-set', CALENDAR_HOME),
        }
        responses = [create_propfind_response(CALDAV_ROOT, principal_props)]

        if depth > 0:
            responses.append(create_propfind_response(CALENDAR_HOME, {
                f'{{{DAV_NS}}}resourcetype': collection_resourcetype(),
                f'{{{DAV_NS}}}displayname': 'Calendars'
            }))

        return create_xml_response(build_multistatus(responses))

    # Calendar home set
    @app.route(CALENDAR_HOME, methods=['OPTIONS', 'PROPFIND'])
    def calendar_home():
        if request.method == 'OPTIONS':
            return options_response()
        return propfind_calendar_home()

    @requires_auth
    def propfind_calendar_home():
        depth = parse_depth_header()
        responses = [create_propfind_response(CALENDAR_HOME, {
            f'{{{DAV_NS}}}resourcetype': collection_resourcetype(),
            f'{{{DAV_NS}}}displayname': 'Calendars'
        })]

        if depth > 0:
            for calendar in caldav_service.list_served_calendars():
                responses.append(create_propfind_response(
                    calendar_href(calendar.id), calendar_properties(calendar)
                ))

        return create_xml_response(build_multistatus(responses))

    # Calendar collection
    @app.route(f'{CALENDAR_HOME}<calendar_id>/', methods=['OPTIONS', 'PROPFIND', 'REPORT'])
    def calendar_collection(calendar_id):
        if request.method == 'OPTIONS':
            return options_response()
        if request.method == 'REPORT':
            return report_calendar(calendar_id)
        return propfind_calendar(calendar_id)

    @requires_auth
    def propfind_calendar(calendar_id):
        depth = parse_depth_header()
        calendar = caldav_service.get_calendar(calendar_id)
        if not calendar:
            return Response(status=404)

        responses = [create_propfind_response(calendar_href(calendar.id), calendar_properties(calendar))]

        # members without calendar-data
        if depth > 0:
            for event in caldav_service.list_events(calendar.id):
                responses.append(create_propfind_response(
                    event_href(calendar.id, event.uid), event_properties(event)
                ))

        return create_xml_response(build_multistatus(responses))

    @requires_auth
    def report_calendar(calendar_id):
        calendar = caldav_service.get_calendar(calendar_id)
        if not calendar:
            return Response(status=404)

        try:
            root = _parse_report_body(request.get_data())
        except ET.ParseError:
            return Response('Malformed REPORT body', status=400)

        report_type = root.tag if root is not None else f'{{{CALDAV_NS}}}calendar-query'

        if report_type == f'{{{CALDAV_NS}}}calendar-multiget':
            uids = [uid for uid in map(uid_from_href, _requested_hrefs(root)) if uid]
            events = caldav_service.multiget(calendar.id, uids)
            wants_data = True

        elif report_type == f'{{{CALDAV_NS}}}calendar-query':
            start = end = None
            wants_data = False
            if root is not None:
                try:
                    start, end = _time_range(root)
                except ValueError:
                    return Response('Invalid time-range', status=400)
                wants_data = root.find(f'.//{{{CALDAV_NS}}}calendar-data') is not None
            events = caldav_service.query_events(calendar.id, start, end)

        else:
            logger.info(f"Unsupported REPORT {report_type} on calendar {calendar_id}")
            return Response('Unsupported report', status=400)

        responses = [
            create_propfind_response(event_href(calendar.id, event.uid), event_properties(event, wants_data))
            for event in events
        ]
        return create_xml_response(build_multistatus(responses))

    # Calendar objects
    @app.route(f'{CALENDAR_HOME}<calendar_id>/<path:uid>.ics', methods=['OPTIONS', 'GET', 'PUT', 'DELETE'])
    def calendar_object(calendar_id, uid):
        if request.method == 'OPTIONS':
            return options_response()
        if request.method == 'PUT':
            return put_calendar_event(calendar_id, uid)
        if request.method == 'DELETE':
            return delete_calendar_event(calendar_id, uid)
        return get_calendar_event(calendar_id, uid)

    @requires_auth
    def get_calendar_event(calendar_id, uid):
        calendar = caldav_service.get_calendar(calendar_id)
        event = caldav_service.get_event(calendar_id, uid) if calendar else None
        if not event:
            return Response(status=404)

        return Response(
            event.raw_ical,
            content_type='text/calendar; charset=utf-8',
            headers={'ETag': event.etag or ''}
        )

    @requires_auth
    def put_calendar_event(calendar_id, uid):
        outcome = caldav_service.put_event(
            calendar_id,
            uid,
            request.get_data(as_text=True),
            if_match=request.headers.get('If-Match'),
            if_none_match=request.headers.get('If-None-Match')
        )
        return Response(status=201 if outcome.created else 204, headers={'ETag': outcome.etag})

    @requires_auth
    def delete_calendar_event(calendar_id, uid):
        caldav_service.delete_event(calendar_id, uid, if_match=request.headers.get('If-Match'))
        return Response(status=204)
