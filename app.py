from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from ceremony import CeremonyStore
from config import Config
from encoding import urlsafe_b64encode_no_padding
from errors import CeremonyError, InternalError, InvalidInputError
from models import db
from options import OptionsBuilder
from security import AntiPhishing, init_security, require_webauthn_security
from verifier import Verifier


def create_app(config=None):
    """Application factory"""
    config = config or Config()

    app = Flask(__name__)
    app.config.from_object(config)
    app.logger.setLevel(app.config['LOG_LEVEL'])

    rp = config.relying_party()
    if not AntiPhishing.validate_rp_id(rp.id, rp.origin):
        app.logger.warning(f"RP ID {rp.id} is not a suffix of origin {rp.origin}; browsers will refuse ceremonies")

    # Initialize extensions
    db.init_app(app)
    if config.TRUSTED_PROXIES:
        hops = config.TRUSTED_PROXIES
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)
    CORS(app, origins=config.CORS_ORIGINS)
    init_security(app)

    with app.app_context():
        db.create_all()

    store = CeremonyStore(timeout_ms=rp.timeout_ms)
    options_builder = OptionsBuilder(rp, store)
    verifier = Verifier(rp, store)

    app.extensions['passgate'] = {'rp': rp, 'options': options_builder, 'verifier': verifier}

    app.logger.info(f"WebAuthn RP ID: {rp.id}, origin: {rp.origin}")

    def json_payload():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidInputError('Request body must be a JSON object')
        return data

    def rejected(e):
        if e.suspicious:
            app.logger.warning(f"Possible attack on {request.path} from {request.remote_addr}: {e.code}: {e.message}")
        else:
            app.logger.info(f"Ceremony rejected on {request.path}: {e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    def failed(e):
        app.logger.exception(f"Internal error on {request.path}: {e}")
        db.session.rollback()
        return jsonify(InternalError().to_dict()), 500

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/generate-registration-options', methods=['POST'])
    def generate_registration_options():
        try:
            data = json_payload()
            options, challenge = options_builder.build_registration_options(
                data.get('userId'), data.get('username'), data.get('displayName')
            )
            return jsonify({'options': options, 'challenge': urlsafe_b64encode_no_padding(challenge)}), 200
        except CeremonyError as e:
            return rejected(e)
        except Exception as e:
            return failed(e)

    @app.route('/verify-registration', methods=['POST'])
    @require_webauthn_security()
    def verify_registration():
        try:
            data = json_payload()
            result = verifier.verify_registration(data.get('credential'), data.get('challenge'))
            return jsonify({'success': True, **result}), 200
        except CeremonyError as e:
            return rejected(e)
        except Exception as e:
            return failed(e)

    @app.route('/generate-authentication-options', methods=['POST'])
    def generate_authentication_options():
        try:
            data = json_payload()
            options, challenge = options_builder.build_authentication_options(data.get('credentialIds'))
            return jsonify({'options': options, 'challenge': urlsafe_b64encode_no_padding(challenge)}), 200
        except CeremonyError as e:
            return rejected(e)
        except Exception as e:
            return failed(e)

    @app.route('/verify-authentication', methods=['POST'])
    @require_webauthn_security()
    def verify_authentication():
        try:
            data = json_payload()
            result = verifier.verify_authentication(data.get('credential'), data.get('challenge'))
            return jsonify(result), 200
        except CeremonyError as e:
            return rejected(e)
        except Exception as e:
            return failed(e)

    return app
