"""
Builds PublicKeyCredentialCreationOptions / PublicKeyCredentialRequestOptions
and opens the matching pending ceremony.
"""
import json

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from webauthn import generate_registration_options, generate_authentication_options
from webauthn import options_to_json
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialType,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier

from ceremony import new_challenge
from errors import InvalidInputError, InternalError
from models import db, User, Challenge

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,  # ES256, -7
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,  # RS256, -257
]

ALLOWED_TRANSPORTS = [
    AuthenticatorTransport.INTERNAL,
    AuthenticatorTransport.USB,
    AuthenticatorTransport.NFC,
    AuthenticatorTransport.BLE,
]


def _require_text(value, name):
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f'{name} is required')
    return value


class OptionsBuilder:
    """Issues ceremony options bound to a fresh challenge"""

    def __init__(self, rp, store):
        self.rp = rp
        self.store = store

    def build_registration_options(self, user_id, username, display_name):
        """Return ``(options, challenge)`` for a registration ceremony on behalf of ``user_id``"""
        _require_text(user_id, 'userId')
        _require_text(username, 'username')
        _require_text(display_name, 'displayName')

        user = self._get_or_create_user(user_id, username, display_name)
        challenge = new_challenge()

        options = generate_registration_options(
            rp_id=self.rp.id,
            rp_name=self.rp.name,
            user_id=user.user_handle,
            user_name=username,
            user_display_name=display_name,
            challenge=challenge,
            timeout=self.rp.timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=AuthenticatorAttachment.PLATFORM,
                resident_key=ResidentKeyRequirement.DISCOURAGED,
                require_resident_key=False,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
            exclude_credentials=[],
        )
        options_json = json.loads(options_to_json(options))
        options_json.setdefault('excludeCredentials', [])

        self.store.begin(Challenge.REGISTRATION, challenge, user=user)
        current_app.logger.info(f"Registration ceremony started for user {user_id}")

        return options_json, challenge

    def build_authentication_options(self, credential_ids):
        """Return ``(options, challenge)`` for an authentication ceremony.

        Empty ids are dropped. An empty allow-list is a valid discoverable
        credential ceremony.
        """
        if credential_ids is None:
            credential_ids = []
        if not isinstance(credential_ids, list):
            raise InvalidInputError('credentialIds must be a list')
        if any(cid is not None and not isinstance(cid, str) for cid in credential_ids):
            raise InvalidInputError('credentialIds must contain strings')

        allowed = [cid for cid in credential_ids if cid]
        challenge = new_challenge()

        options = generate_authentication_options(
            rp_id=self.rp.id,
            challenge=challenge,
            timeout=self.rp.timeout_ms,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        options_json = json.loads(options_to_json(options))
        # Credential ids are echoed exactly as the browser reported them
        options_json['allowCredentials'] = [
            {
                'id': cid,
                'type': PublicKeyCredentialType.PUBLIC_KEY.value,
                'transports': [t.value for t in ALLOWED_TRANSPORTS],
            }
            for cid in allowed
        ]

        self.store.begin(Challenge.AUTHENTICATION, challenge, allowed_credentials=allowed)
        current_app.logger.info(f"Authentication ceremony started with {len(allowed)} allowed credentials")

        return options_json, challenge

    def _get_or_create_user(self, user_id, username, display_name):
        try:
            user = self._find_user(user_id)
            if user is None:
                user = User.create_user(user_id, username, display_name)
                db.session.add(user)
            else:
                user.user_name = username
                user.display_name = display_name
            db.session.flush()
        except IntegrityError:
            # Another request created the same user first
            db.session.rollback()
            current_app.logger.info(f"User {user_id} was created concurrently, reusing it")
            user = self._find_user(user_id)
            if user is None:
                raise InternalError()
            user.user_name = username
            user.display_name = display_name
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Could not load user {user_id}: {e}")
            raise InternalError() from e
        return user

    @staticmethod
    def _find_user(user_id):
        return User.query.filter_by(user_id=user_id).first()
