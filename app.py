"""
QR Attendance Session Service - Main Application

This module serves as the main entry point for the rotating QR code
attendance service. It builds the Flask application, wires the attendance
core components once per process and exposes them as JSON endpoints for
the presenter and scanner front ends.

Endpoints:
- Start/stop an attendance session for a class
- Session countdown status for the presenter display
- Rotating token issuance (optionally rendered as a QR image)
- Token redemption by a scanning student
- Present/late attendance count for presenter polling
"""

import asyncio
import logging

from flask import Flask, current_app, jsonify, request

from config import init_config
from qr_attendance import build_services
from qr_attendance.modules.errors import ValidationError
from qr_attendance.modules.models import STATUS_EXPIRED, utc_now

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)


def get_services():
    """Attendance core components of the current application"""
    return current_app.extensions['qr_attendance']


def create_app(config_name=None, overrides=None, clock=None):
    """
    Create the Flask application.

    Args:
        config_name (str): Key into config.config, defaults to FLASK_ENV
        overrides (dict): Configuration values applied after the config class
        clock: Callable returning the current aware UTC datetime (tests)

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name, overrides)
    logging.getLogger('qr_attendance').setLevel(app.config['LOG_LEVEL'])

    app.extensions['qr_attendance'] = build_services(app.config, clock=clock or utc_now)

    register_routes(app)
    register_commands(app)

    logger.info("QR attendance service initialized")
    return app


def register_routes(app):

    @app.route('/api/qr/session', methods=['POST'])
    async def start_session():
        """Start a session for a class, or return the one already running"""
        try:
            data = request.get_json(silent=True) or {}
            class_id = data.get('classId')
            presenter_id = data.get('presenterId')

            if class_id is None or str(class_id).strip() == '':
                return jsonify({'error': 'Class ID is required'}), 400

            services = get_services()

            existing_session = await services.sessions.get_active_session(class_id)
            if existing_session:
                logger.info(f"Returning existing session {existing_session.id} for class {class_id}")
                return jsonify({'session': existing_session.to_dict()})

            session = await services.sessions.create_session(class_id, presenter_id)
            if not session:
                return jsonify({'error': 'Failed to create QR session'}), 500

            return jsonify({'session': session.to_dict()}), 201

        except ValidationError as e:
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            logger.error(f"Error in QR session creation: {str(e)}")
            return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/qr/session', methods=['DELETE'])
    async def stop_session():
        """Stop a session; stopping an inactive session succeeds"""
        try:
            session_id = request.args.get('sessionId')
            if not session_id:
                return jsonify({'error': 'Session ID is required'}), 400

            success = await get_services().sessions.end_session(session_id)
            if not success:
                return jsonify({'error': 'Failed to end session'}), 500

            return jsonify({'success': True})

        except Exception as e:
            logger.error(f"Error ending QR session: {str(e)}")
            return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/qr/session/status', methods=['GET'])
    async def session_status():
        """Countdown and current window of a session"""
        try:
            session_id = request.args.get('sessionId')
            if not session_id:
                return jsonify({'error': 'Session ID is required'}), 400

            services = get_services()
            session = await services.sessions.get_session(session_id)
            if not session:
                return jsonify({'error': 'Session not found'}), 404

            now = services.sessions.clock()
            classifier = services.classifier
            if services.sessions.is_claimable(session, now):
                window = classifier.classify(session.start_time, now)
                status, remaining = window.status, window.time_remaining_seconds
                label, can_mark = window.window_label, window.can_mark_attendance
            else:
                status, remaining, label, can_mark = STATUS_EXPIRED, 0, 'Session Ended', False

            return jsonify({
                'sessionId': session.id,
                'isActive': session.is_active,
                'status': status,
                'timeRemaining': remaining,
                'timeRemainingFormatted': classifier.format_time_remaining(remaining),
                'windowLabel': label,
                'canMarkAttendance': can_mark,
                'progress': classifier.get_session_progress(session.start_time, now)
            })

        except Exception as e:
            logger.error(f"Error getting session status: {str(e)}")
            return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/qr/token', methods=['POST'])
    async def issue_token():
        """Issue the next rotating token of an active session"""
        try:
            data = request.get_json(silent=True) or {}
            session_id = data.get('sessionId')

            if session_id is None or str(session_id).strip() == '':
                return jsonify({'error': 'Session ID is required'}), 400

            services = get_services()

            session = await services.sessions.get_session(session_id)
            if not session or not services.sessions.is_claimable(session):
                return jsonify({'error': 'Session is not active'}), 409

            token = await services.issuer.issue_token(session_id)
            if not token:
                return jsonify({'error': 'Failed to generate token'}), 500

            # Housekeeping only; redemption re-checks expiry itself
            await services.issuer.purge_expired()

            response = {
                'token': token,
                'expiresIn': current_app.config['QR_TOKEN_LIFETIME_SECONDS']
            }

            if data.get('includeImage'):
                qr_result = services.qr_generator.generate_token_qr(token)
                if qr_result['success']:
                    response['qrImage'] = qr_result['image_base64']

            return jsonify(response)

        except ValidationError as e:
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            logger.error(f"Error in QR token API: {str(e)}")
            return jsonify({'error': 'Internal server error'}), 500

    @app.route('/api/qr/scan', methods=['POST'])
    async def scan_token():
        """Redeem a scanned token and mark the student's attendance"""
        try:
            data = request.get_json(silent=True) or {}
            token = (data.get('token') or '').strip()
            student_id = data.get('studentId')
            student_email = (data.get('studentEmail') or '').strip()

            if not token:
                return jsonify({'success': False, 'error': 'Token is required'}), 400

            services = get_services()

            # Scanner apps that only know the signed-in email identify by it
            if (student_id is None or str(student_id).strip() == '') and student_email:
                student = await services.students.get_student_by_email(student_email)
                if not student:
                    return jsonify({'success': False, 'error': 'Student not found'}), 404
                student_id = student['id']

            if student_id is None or str(student_id).strip() == '':
                return jsonify({'success': False, 'error': 'Student ID is required'}), 400

            outcome = await services.attendance.mark_attendance(token, student_id)
            return jsonify(outcome.to_dict()), outcome.http_status

        except Exception as e:
            logger.error(f"Error in QR scan API: {str(e)}")
            return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.route('/api/attendance/count', methods=['GET'])
    async def attendance_count():
        """Number of present and late records of a class"""
        try:
            class_id = request.args.get('classId')
            if not class_id:
                return jsonify({'error': 'Class ID is required'}), 400

            count = await get_services().attendance.get_attendance_count(class_id)
            if count is None:
                return jsonify({'error': 'Failed to get attendance count'}), 500

            return jsonify({'count': count})

        except Exception as e:
            logger.error(f"Error getting attendance count: {str(e)}")
            return jsonify({'error': 'Internal server error'}), 500


def register_commands(app):

    @app.cli.command('purge-tokens')
    def purge_tokens():
        """Delete expired rotating tokens."""
        deleted = asyncio.run(app.extensions['qr_attendance'].issuer.purge_expired())
        print(f"Deleted {deleted} expired tokens")


if __name__ == '__main__':
    app = create_app()
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=5000)
