import hashlib
import json
import os
import struct

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from app import create_app
from config import Config
from models import db

RP_ID = 'login.example.com'
ORIGIN = 'https://login.example.com'

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


class ExampleRPConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WEBAUTHN_RP_NAME = 'Passgate Test'
    WEBAUTHN_RP_ORIGIN = ORIGIN
    WEBAUTHN_RP_ID = RP_ID
    WEBAUTHN_TIMEOUT_MS = 60000
    WEBAUTHN_REQUIRE_CLIENT_DATA = False
    LOG_LEVEL = 'DEBUG'


class SoftAuthenticator:
    """A software authenticator producing real ES256 / RS256 credentials"""

    def __init__(self, alg='ES256', rp_id=RP_ID, origin=ORIGIN):
        self.alg = alg
        self.rp_id = rp_id
        self.origin = origin
        if alg == 'ES256':
            self.private_key = ec.generate_private_key(ec.SECP256R1())
        else:
            self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.raw_id = os.urandom(16)
        self.credential_id = bytes_to_base64url(self.raw_id)
        self.sign_count = 0
        self.user_handle = None

    @property
    def public_key(self):
        return self.private_key.public_key()

    def spki(self):
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def cose_key(self):
        if self.alg == 'ES256':
            numbers = self.public_key.public_numbers()
            return cbor2.dumps({
                1: 2,
                3: -7,
                -1: 1,
                -2: numbers.x.to_bytes(32, 'big'),
                -3: numbers.y.to_bytes(32, 'big'),
            })
        numbers = self.public_key.public_numbers()
        return cbor2.dumps({
            1: 3,
            3: -257,
            -1: numbers.n.to_bytes((numbers.n.bit_length() + 7) // 8, 'big'),
            -2: numbers.e.to_bytes(3, 'big'),
        })

    def client_data(self, ceremony_type, challenge, origin=None):
        return json.dumps({
            'type': ceremony_type,
            'challenge': challenge,
            'origin': origin or self.origin,
            'crossOrigin': False,
        }).encode('utf-8')

    def authenticator_data(self, counter, flags=FLAG_UP | FLAG_UV, rp_id=None, attested=False):
        data = hashlib.sha256((rp_id or self.rp_id).encode('utf-8')).digest()
        if attested:
            flags |= FLAG_AT
        data += bytes([flags]) + struct.pack('>I', counter)
        if attested:
            data += bytes(16) + struct.pack('>H', len(self.raw_id)) + self.raw_id + self.cose_key()
        return data

    def sign(self, data):
        if self.alg == 'ES256':
            return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        return self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    def register(self, challenge, ceremony_type='webauthn.create', origin=None, public_key=None,
                 attestation=False, include_client_data=True):
        response = {
            'publicKey': bytes_to_base64url(public_key if public_key is not None else self.spki()),
            'transports': ['internal'],
        }
        if include_client_data:
            response['clientDataJSON'] = bytes_to_base64url(self.client_data(ceremony_type, challenge, origin))
        if attestation:
            auth_data = self.authenticator_data(self.sign_count, attested=True)
            response['attestationObject'] = bytes_to_base64url(
                cbor2.dumps({'fmt': 'none', 'attStmt': {}, 'authData': auth_data})
            )
        return {'id': self.credential_id, 'rawId': self.credential_id, 'type': 'public-key', 'response': response}

    def assertion(self, challenge, counter=None, ceremony_type='webauthn.get', origin=None, rp_id=None,
                  flags=FLAG_UP | FLAG_UV, user_handle=None, tamper=False):
        if counter is None:
            self.sign_count += 1
            counter = self.sign_count
        auth_data = self.authenticator_data(counter, flags=flags, rp_id=rp_id)
        client_data = self.client_data(ceremony_type, challenge, origin)
        signature = self.sign(auth_data + hashlib.sha256(client_data).digest())
        if tamper:
            client_data = self.client_data(ceremony_type, challenge, origin).replace(b'"crossOrigin": false',
                                                                                      b'"crossOrigin": true')
        response = {
            'authenticatorData': bytes_to_base64url(auth_data),
            'clientDataJSON': bytes_to_base64url(client_data),
            'signature': bytes_to_base64url(signature),
        }
        if user_handle is not None:
            response['userHandle'] = bytes_to_base64url(user_handle)
        return {'id': self.credential_id, 'rawId': self.credential_id, 'type': 'public-key', 'response': response}


@pytest.fixture
def app():
    app = create_app(ExampleRPConfig())
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


def begin_registration(client, user_id='u1', username='alice', display_name='Alice'):
    response = client.post('/generate-registration-options', json={
        'userId': user_id,
        'username': username,
        'displayName': display_name,
    })
    assert response.status_code == 200
    return response.get_json()


def begin_authentication(client, credential_ids):
    response = client.post('/generate-authentication-options', json={'credentialIds': credential_ids})
    assert response.status_code == 200
    return response.get_json()


@pytest.fixture
def registered(client, authenticator):
    """An authenticator whose credential is enrolled for user u1"""
    body = begin_registration(client)
    authenticator.user_handle = base64url_to_bytes(body['options']['user']['id'])
    response = client.post('/verify-registration', json={
        'credential': authenticator.register(body['challenge']),
        'challenge': body['challenge'],
    })
    assert response.status_code == 200, response.get_json()
    return authenticator
