"""
Registration and authentication verification.

Registration binds a new public key credential to the user the ceremony was
opened for. Authentication checks the assertion signature over
``authenticatorData || SHA-256(clientDataJSON)`` with the stored key and the
algorithm recorded at registration, then advances the signature counter.
"""
import hashlib
import hmac

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from webauthn.helpers import (
    decode_credential_public_key,
    decoded_public_key_to_cryptography,
    parse_attestation_object,
    parse_authenticator_data,
    parse_client_data_json,
)
from webauthn.helpers import verify_signature as webauthn_verify_signature
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import ClientDataType

from encoding import decode_field
from errors import (
    CeremonyKindMismatchError,
    CeremonyNotFoundError,
    ChallengeMismatchError,
    CredentialNotAllowedError,
    DuplicateCredentialError,
    InternalError,
    InvalidInputError,
    MalformedCredentialError,
    OriginMismatchError,
    ReplayOrCloneSuspectedError,
    SignatureVerificationError,
    UnknownCredentialError,
)
from models import db, Challenge, Credential, utcnow
from security import AntiPhishing

ES256 = int(COSEAlgorithmIdentifier.ECDSA_SHA_256)
RS256 = int(COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256)


def load_public_key(raw, declared_alg=None):
    """Parse a SubjectPublicKeyInfo or COSE_Key into ``(spki_der, cose_alg)``.

    Only P-256 ECDSA (ES256) and RSA PKCS#1 v1.5 (RS256) keys are accepted.
    """
    cose_alg = None
    try:
        key = serialization.load_der_public_key(raw)
    except (ValueError, TypeError):
        key, cose_alg = _load_cose_key(raw)

    if isinstance(key, ec.EllipticCurvePublicKey) and isinstance(key.curve, ec.SECP256R1):
        alg = ES256
    elif isinstance(key, rsa.RSAPublicKey):
        alg = RS256
    else:
        raise MalformedCredentialError('Unsupported public key type')

    if cose_alg is not None and cose_alg != alg:
        raise MalformedCredentialError(f'Unsupported COSE algorithm {cose_alg}')
    if declared_alg is not None and declared_alg != alg:
        raise MalformedCredentialError('publicKeyAlgorithm does not match the public key')

    spki = key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return spki, alg


def _load_cose_key(raw):
    try:
        decoded = decode_credential_public_key(raw)
        key = decoded_public_key_to_cryptography(decoded)
    except (WebAuthnException, ValueError, KeyError, IndexError, TypeError) as e:
        # A CBOR array or scalar in place of a COSE_Key map fails inside the decoder
        raise MalformedCredentialError('Public key is neither SubjectPublicKeyInfo nor COSE_Key') from e
    return key, int(decoded.alg)


def verify_signature(spki, alg, signature, data):
    """Raise SignatureVerificationError unless ``signature`` over ``data`` verifies"""
    try:
        webauthn_verify_signature(
            public_key=serialization.load_der_public_key(spki),
            signature_alg=COSEAlgorithmIdentifier(alg),
            signature=signature,
            data=data,
        )
    except InvalidSignature as e:
        raise SignatureVerificationError() from e
    except WebAuthnException as e:
        raise SignatureVerificationError(f'Unsupported algorithm {alg}') from e
    except ValueError as e:
        raise SignatureVerificationError('Stored public key is unusable') from e


class Verifier:
    """Decides whether a credential response completes its pending ceremony"""

    def __init__(self, rp, store):
        self.rp = rp
        self.store = store
        self.rp_id_hash = hashlib.sha256(rp.id.encode('utf-8')).digest()

    # Registration

    def verify_registration(self, credential, challenge=None):
        """Verify an attestation response and persist the new credential.

        Returns ``{"credentialId": ..., "publicKey": ...}``.
        """
        response = self._response_of(credential)
        raw_client_data, client_data = self._parse_client_data(response)
        expected = self._resolve_challenge(challenge, client_data)

        pending = self._find_pending(expected, Challenge.REGISTRATION)

        if client_data is not None:
            self._check_client_data(client_data, pending.challenge, ClientDataType.WEBAUTHN_CREATE)
        elif self.rp.require_client_data:
            raise MalformedCredentialError('Missing clientDataJSON')
        else:
            current_app.logger.info("Registration without clientDataJSON, challenge binding only")

        credential_id = credential.get('id')
        if not isinstance(credential_id, str) or not credential_id:
            raise MalformedCredentialError('Missing credential id')
        raw_key = decode_field(response.get('publicKey'), 'response.publicKey', MalformedCredentialError)
        declared_alg = response.get('publicKeyAlgorithm')
        if declared_alg is not None and not isinstance(declared_alg, int):
            raise MalformedCredentialError('publicKeyAlgorithm must be an integer')
        spki, alg = load_public_key(raw_key, declared_alg)

        sign_count = 0
        if response.get('attestationObject'):
            sign_count = self._check_attestation_object(response['attestationObject'], credential_id, spki)

        if Credential.query.filter_by(credential_id=credential_id).first() is not None:
            raise DuplicateCredentialError()

        transports = response.get('transports')
        owner = pending.user
        try:
            self.store.consume(pending)
            db.session.add(Credential(
                user=owner,
                credential_id=credential_id,
                public_key=spki,
                public_key_alg=alg,
                sign_count=sign_count,
                transports=transports if isinstance(transports, list) else None,
            ))
            db.session.commit()
        except CeremonyNotFoundError:
            db.session.rollback()
            raise
        except IntegrityError as e:
            db.session.rollback()
            raise DuplicateCredentialError() from e
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Could not store credential: {e}")
            raise InternalError() from e

        current_app.logger.info(f"Registered credential {credential_id[:16]} for user {owner.user_id}")
        return {'credentialId': credential_id, 'publicKey': response['publicKey']}

    def _check_attestation_object(self, encoded, credential_id, spki):
        raw = decode_field(encoded, 'response.attestationObject', MalformedCredentialError)
        try:
            attestation = parse_attestation_object(raw)
        except (WebAuthnException, ValueError, KeyError, TypeError) as e:
            raise MalformedCredentialError('Invalid attestationObject') from e

        auth_data = attestation.auth_data
        if not hmac.compare_digest(auth_data.rp_id_hash, self.rp_id_hash):
            raise OriginMismatchError('Unexpected RP ID hash')
        if not auth_data.flags.up:
            raise MalformedCredentialError('User presence flag not set')

        attested = auth_data.attested_credential_data
        if attested is None:
            raise MalformedCredentialError('attestationObject carries no credential')
        if not hmac.compare_digest(decode_field(credential_id, 'id', MalformedCredentialError),
                                   attested.credential_id):
            raise MalformedCredentialError('Credential id does not match attestationObject')
        attested_spki, _ = load_public_key(attested.credential_public_key)
        if attested_spki != spki:
            raise MalformedCredentialError('Public key does not match attestationObject')

        return auth_data.sign_count

    # Authentication

    def verify_authentication(self, credential, challenge=None):
        """Verify an assertion against the stored credential.

        Returns ``{"success": True, "credentialId": ..., "userId": ...}``.
        """
        response = self._response_of(credential)
        raw_client_data, client_data = self._parse_client_data(response)
        expected = self._resolve_challenge(challenge, client_data)

        pending = self._find_pending(expected, Challenge.AUTHENTICATION)

        credential_id = credential.get('id')
        if not isinstance(credential_id, str) or not credential_id:
            raise MalformedCredentialError('Missing credential id')
        if pending.allowed_credentials and credential_id not in pending.allowed_credentials:
            raise CredentialNotAllowedError()

        stored = Credential.query.filter_by(credential_id=credential_id).first()
        if stored is None:
            raise UnknownCredentialError()

        if client_data is None:
            raise MalformedCredentialError('Missing clientDataJSON')
        self._check_client_data(client_data, pending.challenge, ClientDataType.WEBAUTHN_GET)

        raw_auth_data = decode_field(response.get('authenticatorData'), 'response.authenticatorData',
                                     MalformedCredentialError)
        signature = decode_field(response.get('signature'), 'response.signature', MalformedCredentialError)
        try:
            auth_data = parse_authenticator_data(raw_auth_data)
        except (WebAuthnException, ValueError, KeyError, TypeError) as e:
            raise MalformedCredentialError('Invalid authenticatorData') from e

        if not hmac.compare_digest(auth_data.rp_id_hash, self.rp_id_hash):
            raise OriginMismatchError('Unexpected RP ID hash')
        if not auth_data.flags.up:
            raise MalformedCredentialError('User presence flag not set')

        owner = stored.user
        if response.get('userHandle'):
            user_handle = decode_field(response['userHandle'], 'response.userHandle', MalformedCredentialError)
            if not hmac.compare_digest(user_handle, owner.user_handle):
                raise CredentialNotAllowedError('User handle does not match credential owner')

        client_data_hash = hashlib.sha256(raw_client_data).digest()
        verify_signature(stored.public_key, stored.public_key_alg, signature, raw_auth_data + client_data_hash)

        new_count = auth_data.sign_count
        try:
            self.store.consume(pending)
            self._advance_sign_count(stored, new_count)
            owner.last_login = utcnow()
            db.session.commit()
        except (CeremonyNotFoundError, ReplayOrCloneSuspectedError):
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Could not complete authentication: {e}")
            raise InternalError() from e

        current_app.logger.info(f"Authenticated user {owner.user_id} with credential {credential_id[:16]}")
        return {'success': True, 'credentialId': credential_id, 'userId': owner.user_id}

    def _advance_sign_count(self, stored, new_count):
        """Compare-and-set the counter so concurrent assertions cannot both pass"""
        query = Credential.query.filter(Credential.id == stored.id)
        if new_count == 0:
            # Authenticator without counter support
            query = query.filter(Credential.sign_count == 0)
        else:
            query = query.filter(Credential.sign_count < new_count)
        updated = query.update(
            {'sign_count': new_count, 'last_used': utcnow()},
            synchronize_session=False,
        )
        if updated != 1:
            current_app.logger.warning(
                f"Sign count did not increase for credential {stored.credential_id[:16]}: "
                f"stored={stored.sign_count} received={new_count}"
            )
            raise ReplayOrCloneSuspectedError()

    # Shared steps

    def _response_of(self, credential):
        if not isinstance(credential, dict):
            raise InvalidInputError('credential is required')
        response = credential.get('response')
        if not isinstance(response, dict):
            raise MalformedCredentialError('Missing credential response')
        return response

    def _parse_client_data(self, response):
        """Return ``(raw_bytes, parsed)`` for clientDataJSON, or ``(None, None)``"""
        if response.get('clientDataJSON') is None:
            return None, None
        raw = decode_field(response['clientDataJSON'], 'response.clientDataJSON', MalformedCredentialError)
        try:
            client_data = parse_client_data_json(raw)
        except (WebAuthnException, ValueError, KeyError, TypeError) as e:
            raise MalformedCredentialError('Invalid clientDataJSON') from e
        return raw, client_data

    def _resolve_challenge(self, challenge, client_data):
        if challenge is not None:
            return decode_field(challenge, 'challenge')
        if client_data is not None:
            return client_data.challenge
        raise InvalidInputError('challenge is required')

    def _find_pending(self, challenge, kind):
        pending = self.store.find(challenge)
        if pending is None:
            raise CeremonyNotFoundError()
        if pending.challenge_type != kind:
            raise CeremonyKindMismatchError(f'Challenge was issued for {pending.challenge_type}')
        return pending

    def _check_client_data(self, client_data, expected_challenge, expected_type):
        if client_data.type != expected_type:
            raise ChallengeMismatchError(f'Unexpected client data type {client_data.type}')
        if not hmac.compare_digest(client_data.challenge, expected_challenge):
            raise ChallengeMismatchError()
        if not AntiPhishing.validate_origin(client_data.origin, [self.rp.origin]):
            raise OriginMismatchError(f'Unexpected origin {client_data.origin}')
