import logging
from datetime import datetime
from typing import Optional

from flask import Flask, current_app, jsonify, request

from .config import SecurityConfig, get_config
from .engine import TrustEngine, build_engine
from .models import ViewingActivity
from .utils import ValidationError

logger = logging.getLogger(__name__)


def configure_logging(config: SecurityConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def get_engine() -> TrustEngine:
    return current_app.extensions['trust_engine']


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _required(data: dict, *fields: str):
    missing = [name for name in fields if data.get(name) in (None, '')]
    if missing:
        raise ValidationError(f"Missing field: {', '.join(missing)}")
    values = tuple(data[name] for name in fields)
    return values[0] if len(values) == 1 else values


def _verification_response(result):
    if result.ok:
        return jsonify({"msg": result.message}), 200
    status = 429 if result.reason == 'rate_limited' else 401
    body = {"error": result.message, "remaining": result.remaining}
    if result.retry_after is not None:
        body["retry_after"] = result.retry_after.isoformat()
    return jsonify(body), status


def create_app(config: Optional[SecurityConfig] = None,
               engine: Optional[TrustEngine] = None) -> Flask:
    config = config or get_config()
    configure_logging(config)

    app = Flask(__name__)
    app.extensions['trust_engine'] = engine or build_engine(config)

    # --- MIDDLEWARE / HELPERS ---

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'self'"
        response.headers['Cache-Control'] = 'no-store'
        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"error": str(e)}), 400

    # --- SECOND FACTOR ---

    @app.route('/2fa/send', methods=['POST'])
    def send_code():
        data = _json_body()
        sent, expires_at = get_engine().two_factor.issue_code(
            *_required(data, 'identity', 'method', 'destination')
        )
        if not sent:
            return jsonify({"error": "Failed to send code"}), 502
        return jsonify({"msg": "Code sent", "expires_at": expires_at.isoformat()}), 200

    @app.route('/2fa/resend', methods=['POST'])
    def resend_code():
        data = _json_body()
        sent, expires_at = get_engine().two_factor.resend_code(_required(data, 'identity'))
        if not sent:
            return jsonify({"error": "No pending code to resend or delivery failed"}), 400
        return jsonify({"msg": "Code sent", "expires_at": expires_at.isoformat()}), 200

    @app.route('/2fa/verify', methods=['POST'])
    def verify_code():
        data = _json_body()
        identity, code = _required(data, 'identity', 'code')
        two_factor = get_engine().two_factor
        if data.get('method') == 'authenticator':
            result = two_factor.verify_authenticator(identity, code)
        else:
            result = two_factor.verify_code(identity, code)
        return _verification_response(result)

    @app.route('/2fa/backup/verify', methods=['POST'])
    def verify_backup_code():
        data = _json_body()
        result = get_engine().two_factor.verify_backup(*_required(data, 'identity', 'code'))
        return _verification_response(result)

    # --- SESSIONS ---

    @app.route('/sessions', methods=['POST'])
    def start_session():
        data = _json_body()
        device = data.get('device') or {}
        location = data.get('location') or {}
        if not isinstance(device, dict) or not isinstance(location, dict):
            raise ValidationError("device and location must be JSON objects")
        session = get_engine().sessions.start_session(
            _required(data, 'identity'),
            device,
            data.get('ip_address') or request.remote_addr or '',
            location,
        )
        return jsonify(session.to_dict()), 201

    @app.route('/sessions/<session_id>/touch', methods=['POST'])
    def touch_session(session_id):
        if not get_engine().sessions.touch_session(session_id):
            return jsonify({"error": "Session invalid or expired"}), 404
        return jsonify({"msg": "Activity recorded"})

    @app.route('/sessions/<session_id>', methods=['DELETE'])
    def terminate_session(session_id):
        if not get_engine().sessions.terminate_session(session_id):
            return jsonify({"error": "Session not found"}), 404
        return jsonify({"msg": "Session terminated"})

    @app.route('/users/<identity>/sessions', methods=['GET'])
    def list_active_sessions(identity):
        sessions = get_engine().sessions.get_active_sessions(identity)
        return jsonify({"sessions": [s.to_dict() for s in sessions]})

    @app.route('/users/<identity>/sessions/stats', methods=['GET'])
    def session_stats(identity):
        stats = get_engine().sessions.get_session_stats(identity)
        return jsonify({
            "total": stats.total,
            "active": stats.active,
            "devices": stats.devices,
            "locations": stats.locations,
        })

    @app.route('/users/<identity>/sessions/terminate', methods=['POST'])
    def panic_button(identity):
        """Safety feature: log out every device"""
        count = get_engine().sessions.terminate_all_sessions(identity)
        return jsonify({"msg": "All sessions terminated.", "terminated": count})

    # --- ACTIVITY & SECURITY EVENTS ---

    @app.route('/activity/viewing', methods=['POST'])
    def record_viewing():
        data = _json_body()
        identity, content_id, raw_start = _required(data, 'identity', 'content_id', 'start_time')
        try:
            start_time = datetime.fromisoformat(raw_start)
        except (TypeError, ValueError):
            raise ValidationError("start_time must be an ISO 8601 timestamp")

        activity = ViewingActivity(
            identity=identity,
            content_id=content_id,
            content_type=data.get('content_type', 'movie'),
            start_time=start_time,
            duration=int(data.get('duration', 0)),
            quality=data.get('quality', 'HD'),
            device_type=data.get('device_type', 'desktop'),
            location=data.get('location', 'Unknown'),
            ip_address=data.get('ip_address') or request.remote_addr or '',
        )
        event = get_engine().detector.check_unusual_hours(activity)
        return jsonify({"flagged": event is not None}), 202

    @app.route('/users/<identity>/security-events', methods=['GET'])
    def list_security_events(identity):
        events = get_engine().detector.get_suspicious_activities(identity)
        return jsonify({"events": [e.to_dict() for e in events]})

    @app.route('/security-events/unresolved', methods=['GET'])
    def list_unresolved_events():
        events = get_engine().detector.get_unresolved_activities()
        return jsonify({"events": [e.to_dict() for e in events]})

    @app.route('/security-events/<event_id>/resolve', methods=['POST'])
    def resolve_event(event_id):
        if not get_engine().detector.resolve_activity(event_id):
            return jsonify({"error": "Event not found"}), 404
        return jsonify({"msg": "Event resolved"})

    return app


if __name__ == "__main__":
    # In production, run with Gunicorn + SSL
    create_app().run(debug=False)
