"""JSON API used by the calendar UI and settings pages."""

from flask import jsonify, request

from domain import EventChanges
from monitoring import ValidationError
from .auth import requires_auth


API_ROOT = '/api/calendar'


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def register_api_routes(app, calendar_service, async_executor):
    """Register JSON routes for events, accounts, calendars and sync."""

    @app.route(f'{API_ROOT}/events', methods=['GET'])
    @requires_auth
    def list_events():
        start = request.args.get('start')
        end = request.args.get('end')
        if not start or not end:
            raise ValidationError("start and end query parameters are required")
        return jsonify({'events': calendar_service.get_events_by_date_range(start, end)})

    @app.route(f'{API_ROOT}/events', methods=['POST'])
    @requires_auth
    def create_event():
        data = _json_body()
        event = async_executor.run_async(calendar_service.create_event(
            title=data.get('title'),
            start_at=data.get('start_at'),
            end_at=data.get('end_at'),
            all_day=bool(data.get('all_day', False)),
            description=data.get('description'),
            location=data.get('location'),
            calendar_id=data.get('calendar_id')
        ))
        return jsonify(event.to_dict()), 201

    @app.route(f'{API_ROOT}/events/<event_id>', methods=['PATCH'])
    @requires_auth
    def update_event(event_id):
        changes = EventChanges.from_dict(_json_body())
        event = async_executor.run_async(calendar_service.update_event(event_id, changes))
        return jsonify(event.to_dict())

    @app.route(f'{API_ROOT}/events/<event_id>', methods=['DELETE'])
    @requires_auth
    def delete_event(event_id):
        async_executor.run_async(calendar_service.delete_event(event_id))
        return jsonify({'id': event_id})

    @app.route(f'{API_ROOT}/sync', methods=['POST'])
    @requires_auth
    def trigger_sync():
        data = _json_body()
        account_id = data.get('account_id') or data.get('accountId')
        result = async_executor.run_async(calendar_service.trigger_sync(account_id))
        return jsonify(result.to_dict())

    @app.route(f'{API_ROOT}/accounts', methods=['GET'])
    @requires_auth
    def list_accounts():
        return jsonify({'accounts': [a.to_dict() for a in calendar_service.list_accounts()]})

    @app.route(f'{API_ROOT}/accounts', methods=['POST'])
    @requires_auth
    def create_account():
        data = _json_body()
        account = calendar_service.create_account(
            server_url=data.get('server_url'),
            username=data.get('username'),
            password=data.get('password'),
            display_name=data.get('display_name')
        )
        return jsonify(account.to_dict()), 201

    @app.route(f'{API_ROOT}/accounts/<account_id>', methods=['PATCH'])
    @requires_auth
    def update_account(account_id):
        account = calendar_service.update_account(account_id, **_json_body())
        return jsonify(account.to_dict())

    @app.route(f'{API_ROOT}/accounts/<account_id>', methods=['DELETE'])
    @requires_auth
    def delete_account(account_id):
        calendar_service.delete_account(account_id)
        return jsonify({'id': account_id})

    @app.route(f'{API_ROOT}/calendars', methods=['GET'])
    @requires_auth
    def list_calendars():
        return jsonify({'calendars': calendar_service.list_calendars()})

    @app.route(f'{API_ROOT}/calendars/<calendar_id>/toggle', methods=['POST'])
    @requires_auth
    def toggle_calendar(calendar_id):
        calendar = calendar_service.toggle_calendar(calendar_id)
        return jsonify(calendar.to_dict())
