from cryptography.hazmat.primitives.asymmetric import ec
from OpenSSL import crypto

from samlidp.settings import SAML, SAMLP

SP_ENTITY_ID = 'https://sp.example.com/metadata'
SP_ACS_URL = 'https://sp.example.com/acs'
SP_LOGOUT_URL = 'https://sp.example.com/logout'

AUTHN_REQUEST = (
    '<samlp:AuthnRequest xmlns:samlp="{samlp}" xmlns:saml="{saml}" '
    'ID="{id}" Version="2.0" IssueInstant="2018-07-16T09:38:29Z" '
    'AssertionConsumerServiceURL="{acs_url}">'
    '<saml:Issuer>{issuer}</saml:Issuer>'
    '<samlp:RequestedAuthnContext Comparison="exact">'
    '<saml:AuthnContextClassRef>urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport'
    '</saml:AuthnContextClassRef>'
    '</samlp:RequestedAuthnContext>'
    '</samlp:AuthnRequest>'
)

LOGOUT_REQUEST = (
    '<samlp:LogoutRequest xmlns:samlp="{samlp}" xmlns:saml="{saml}" '
    'ID="{id}" Version="2.0" IssueInstant="2018-07-16T09:38:29Z">'
    '<saml:Issuer>{issuer}</saml:Issuer>'
    '<saml:NameID>{name_id}</saml:NameID>'
    '<samlp:SessionIndex>{session_index}</samlp:SessionIndex>'
    '</samlp:LogoutRequest>'
)


def authn_request(request_id='_af43d1a0-e111-0130-661a-3c0754403fdb', issuer=SP_ENTITY_ID,
                  acs_url=SP_ACS_URL):
    return AUTHN_REQUEST.format(
        samlp=SAMLP, saml=SAML, id=request_id, issuer=issuer, acs_url=acs_url)


def logout_request(request_id='_logout-request-id', issuer=SP_ENTITY_ID, name_id='jdoe@example.com',
                   session_index='_session'):
    return LOGOUT_REQUEST.format(
        samlp=SAMLP, saml=SAML, id=request_id, issuer=issuer, name_id=name_id,
        session_index=session_index)


def generate_certificate(common_name='samlidp.test', key=None):
    """Returns a (certificate, private key) pair of PEM strings."""
    if key is None:
        key = crypto.PKey()
        key.generate_key(crypto.TYPE_RSA, 2048)
    cert = crypto.X509()
    cert.get_subject().C = 'IT'
    cert.get_subject().CN = common_name
    cert.set_serial_number(1000)
    cert.gmtime_adj_notBefore(0)
    cert.gmtime_adj_notAfter(10 * 365 * 24 * 60 * 60)
    cert.set_issuer(cert.get_subject())
    cert.set_pubkey(key)
    cert.sign(key, 'sha256')
    return (
        crypto.dump_certificate(crypto.FILETYPE_PEM, cert).decode('ascii'),
        crypto.dump_privatekey(crypto.FILETYPE_PEM, key).decode('ascii'),
    )


def generate_ec_certificate(common_name='ec.samlidp.test'):
    key = crypto.PKey.from_cryptography_key(ec.generate_private_key(ec.SECP256R1()))
    return generate_certificate(common_name, key=key)


_CACHE = {}


def certificate(name='sp'):
    """Key pairs are expensive to generate, tests share them by name."""
    if name not in _CACHE:
        _CACHE[name] = generate_certificate('{}.samlidp.test'.format(name))
    return _CACHE[name]
