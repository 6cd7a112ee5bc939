import base64
import hashlib
import re
import unittest
from urllib.parse import parse_qs

import pytest
from lxml import etree

from samlidp.crypto import (
    DigestAlgorithm, HTTPRedirectSignatureVerifier, build_signed_data, certificate_fingerprint,
    decode_base64_and_inflate, deflate_and_base64_encode, fingerprint_matches, load_certificate, load_private_key,
    normalize_x509, sign, sign_http_redirect, sign_xml, verify_signature, verify_xml_signature,
)
from samlidp.exceptions import CryptoMaterialError, SignatureVerificationError
from samlidp.settings import (
    C14N_EXCLUSIVE, SAML, SAMLP, SIG_RSA_SHA1, SIG_RSA_SHA256, SIG_RSA_SHA512, SIGNATURE, SIGNATURE_PLACEHOLDER,
)

from .utils import certificate, generate_ec_certificate


def _document(assertion=False):
    xml = (
        '<samlp:LogoutResponse xmlns:samlp="{samlp}" xmlns:saml="{saml}" ID="_outer" Version="2.0">'
        '<saml:Issuer>https://idp.example.com</saml:Issuer>'
        '{inner}'
        '</samlp:LogoutResponse>'
    ).format(
        samlp=SAMLP, saml=SAML,
        inner=(
            '<saml:Assertion ID="_inner" Version="2.0"><saml:Issuer>https://idp.example.com</saml:Issuer>'
            '</saml:Assertion>' if assertion else ''
        ),
    )
    return etree.fromstring(xml)


def _signed(algorithm='sha256', cert_name='idp'):
    cert, key = certificate(cert_name)
    root = _document()
    root.find('{%s}Issuer' % SAML).addnext(etree.fromstring(SIGNATURE_PLACEHOLDER))
    return etree.tostring(sign_xml(root, key, cert, '_outer', algorithm=algorithm))


class DigestAlgorithmTestCase(unittest.TestCase):

    def test_default_is_sha1(self):
        self.assertEqual(DigestAlgorithm.resolve(), DigestAlgorithm.SHA1)
        self.assertEqual(DigestAlgorithm.resolve(None, None), DigestAlgorithm.SHA1)

    def test_explicit_value_wins_over_default(self):
        self.assertEqual(DigestAlgorithm.resolve('sha512', 'sha256'), DigestAlgorithm.SHA512)
        self.assertEqual(DigestAlgorithm.resolve(None, 'sha384'), DigestAlgorithm.SHA384)

    def test_members_and_uris(self):
        self.assertEqual(DigestAlgorithm.resolve(DigestAlgorithm.SHA256), DigestAlgorithm.SHA256)
        self.assertEqual(DigestAlgorithm.resolve(SIG_RSA_SHA512), DigestAlgorithm.SHA512)
        self.assertEqual(DigestAlgorithm.resolve(SIG_RSA_SHA1), DigestAlgorithm.SHA1)
        self.assertEqual(DigestAlgorithm.resolve('SHA256'), DigestAlgorithm.SHA256)

    def test_unrecognized_falls_back_to_sha1(self):
        self.assertEqual(DigestAlgorithm.resolve('md5'), DigestAlgorithm.SHA1)
        self.assertEqual(DigestAlgorithm.resolve('sha224'), DigestAlgorithm.SHA1)
        self.assertEqual(DigestAlgorithm.resolve('unknown', 'sha256'), DigestAlgorithm.SHA1)

    def test_digest(self):
        self.assertEqual(DigestAlgorithm.SHA1.digest('abc'), hashlib.sha1(b'abc').digest())
        self.assertEqual(DigestAlgorithm.SHA256.digest(b'abc'), hashlib.sha256(b'abc').digest())

    def test_uris(self):
        self.assertEqual(DigestAlgorithm.SHA256.signature_uri, SIG_RSA_SHA256)


class RedirectCodecTestCase(unittest.TestCase):

    def test_framing_is_stripped(self):
        encoded = deflate_and_base64_encode('<samlp:AuthnRequest/>')
        # raw deflate streams have no zlib header (0x78)
        self.assertNotEqual(base64.b64decode(encoded)[0], 0x78)
        self.assertEqual(decode_base64_and_inflate(encoded), b'<samlp:AuthnRequest/>')


class CertificateTestCase(unittest.TestCase):

    def setUp(self):
        self.cert, self.key = certificate('idp')

    def test_normalize(self):
        body = normalize_x509(self.cert)
        self.assertNotIn('BEGIN', body)
        self.assertNotIn('\n', body)
        self.assertEqual(normalize_x509(body), body)
        self.assertEqual(normalize_x509(self.cert.encode('ascii')), body)

    def test_load_certificate(self):
        self.assertIsNotNone(load_certificate(self.cert).public_key())
        self.assertIsNotNone(load_certificate(normalize_x509(self.cert)).public_key())

    def test_load_invalid_material(self):
        with pytest.raises(CryptoMaterialError):
            load_certificate('not a certificate')
        with pytest.raises(CryptoMaterialError):
            load_private_key('not a key')

    def test_fingerprint(self):
        fingerprint = certificate_fingerprint(self.cert)
        self.assertRegex(fingerprint, r'^([0-9A-F]{2}:){19}[0-9A-F]{2}$')
        sha256 = certificate_fingerprint(self.cert, 'sha256')
        self.assertEqual(len(sha256.split(':')), 32)

    def test_fingerprint_matches(self):
        sha256 = certificate_fingerprint(self.cert, 'sha256')
        self.assertTrue(fingerprint_matches(self.cert, sha256))
        self.assertTrue(fingerprint_matches(self.cert, sha256.replace(':', '').lower()))
        self.assertFalse(fingerprint_matches(self.cert, '00' * 32))
        self.assertFalse(fingerprint_matches(self.cert, 'abc'))
        self.assertFalse(fingerprint_matches('garbage', sha256))
        other_cert, _ = certificate('other')
        self.assertFalse(fingerprint_matches(other_cert, sha256))


class DetachedSignatureTestCase(unittest.TestCase):

    def setUp(self):
        self.cert, self.key = certificate('sp')
        self.data = b'SAMLRequest=abc&SigAlg=' + SIG_RSA_SHA256.encode('ascii')

    def test_sign_and_verify(self):
        signature = base64.b64encode(sign(self.data, self.key, 'sha256'))
        self.assertTrue(verify_signature(self.data, signature, self.cert, SIG_RSA_SHA256))

    def test_tampered_data(self):
        signature = base64.b64encode(sign(self.data, self.key, 'sha256'))
        self.assertFalse(verify_signature(self.data + b'x', signature, self.cert, SIG_RSA_SHA256))

    def test_algorithm_mismatch(self):
        signature = base64.b64encode(sign(self.data, self.key, 'sha256'))
        self.assertFalse(verify_signature(self.data, signature, self.cert, SIG_RSA_SHA512))

    def test_wrong_certificate(self):
        other_cert, _ = certificate('other')
        signature = base64.b64encode(sign(self.data, self.key, 'sha256'))
        self.assertFalse(verify_signature(self.data, signature, other_cert, SIG_RSA_SHA256))

    def test_garbled_inputs_never_raise(self):
        self.assertFalse(verify_signature(self.data, '!!!', self.cert, SIG_RSA_SHA256))
        self.assertFalse(verify_signature(self.data, None, self.cert, SIG_RSA_SHA256))
        self.assertFalse(verify_signature(self.data, 'c2lnbmF0dXJl', self.cert, None))
        self.assertFalse(verify_signature(self.data, 'c2lnbmF0dXJl', 'garbage', SIG_RSA_SHA256))

    def test_non_rsa_certificate(self):
        ec_cert, _ = generate_ec_certificate()
        signature = base64.b64encode(sign(self.data, self.key, 'sha256'))
        self.assertFalse(verify_signature(self.data, signature, ec_cert, SIG_RSA_SHA256))
        verifier = HTTPRedirectSignatureVerifier(ec_cert, self.data, signature, SIG_RSA_SHA256)
        with pytest.raises(SignatureVerificationError) as excinfo:
            verifier.verify()
        assert 'RSA public key' in str(excinfo.value)

    def test_verifier_reports_reason(self):
        verifier = HTTPRedirectSignatureVerifier(self.cert, self.data, None, SIG_RSA_SHA256)
        with pytest.raises(SignatureVerificationError) as excinfo:
            verifier.verify()
        assert 'Missing signature' in str(excinfo.value)

    def test_sign_with_invalid_key(self):
        with pytest.raises(CryptoMaterialError):
            sign(self.data, 'garbage')


class HTTPRedirectSigningTestCase(unittest.TestCase):

    def setUp(self):
        self.cert, self.key = certificate('idp')

    def test_signed_query_string(self):
        query = sign_http_redirect(
            '<samlp:LogoutResponse/>', self.key, relay_state='state', algorithm='sha256')
        params = {k: v[0] for k, v in parse_qs(query).items()}
        self.assertEqual(params['SigAlg'], SIG_RSA_SHA256)
        self.assertEqual(params['RelayState'], 'state')
        self.assertEqual(
            decode_base64_and_inflate(params['SAMLResponse']), b'<samlp:LogoutResponse/>')
        signed_data = build_signed_data(params, 'SAMLResponse')
        self.assertTrue(
            signed_data.startswith(b'SAMLResponse=') and b'&RelayState=state&SigAlg=' in signed_data)
        self.assertTrue(verify_signature(signed_data, params['Signature'], self.cert, params['SigAlg']))

    def test_blank_relay_state_is_omitted(self):
        query = sign_http_redirect('<samlp:LogoutResponse/>', self.key, relay_state=' ')
        params = parse_qs(query)
        self.assertNotIn('RelayState', params)
        self.assertEqual(params['SigAlg'], [SIG_RSA_SHA1])

    def test_build_signed_data_skips_missing_values(self):
        self.assertEqual(
            build_signed_data({'SAMLRequest': 'a+b', 'SigAlg': 'alg'}),
            b'SAMLRequest=a%2Bb&SigAlg=alg',
        )


class XMLSignatureTestCase(unittest.TestCase):

    def setUp(self):
        self.cert, self.key = certificate('idp')

    def test_signature_follows_issuer(self):
        root = etree.fromstring(_signed())
        self.assertEqual(root[1].tag, SIGNATURE)
        self.assertEqual(len(root.findall(SIGNATURE)), 1)

    def test_verify(self):
        self.assertTrue(verify_xml_signature(_signed(), self.cert))
        self.assertTrue(verify_xml_signature(_signed().decode('utf-8'), self.cert))

    def test_verify_sha1(self):
        self.assertTrue(verify_xml_signature(_signed(algorithm=None), self.cert))

    def test_tampered_document(self):
        xml = _signed().replace(b'https://idp.example.com', b'https://evil.example.com')
        self.assertFalse(verify_xml_signature(xml, self.cert))

    def test_wrong_certificate(self):
        other_cert, _ = certificate('other')
        self.assertFalse(verify_xml_signature(_signed(), other_cert))

    def test_unsigned_and_malformed_documents(self):
        self.assertFalse(verify_xml_signature(etree.tostring(_document()), self.cert))
        self.assertFalse(verify_xml_signature(b'<unclosed', self.cert))
        self.assertFalse(verify_xml_signature(b'', self.cert))
        self.assertFalse(verify_xml_signature(_signed(), 'garbage'))

    def test_non_rsa_certificate(self):
        ec_cert, _ = generate_ec_certificate()
        self.assertFalse(verify_xml_signature(_signed(), ec_cert))

    def test_canonicalization(self):
        self.assertTrue(verify_xml_signature(_signed(), self.cert, c14n_algorithm=C14N_EXCLUSIVE))
        self.assertFalse(verify_xml_signature(
            _signed(), self.cert, c14n_algorithm='http://www.w3.org/2006/12/xml-c14n11'))

    def test_embedded_certificate_fingerprint(self):
        fingerprint = certificate_fingerprint(self.cert, 'sha256')
        self.assertTrue(verify_xml_signature(_signed(), self.cert, fingerprint=fingerprint))
        self.assertFalse(verify_xml_signature(_signed(), self.cert, fingerprint='AB' * 32))

    def test_signature_must_cover_root(self):
        root = _document(assertion=True)
        inner = root.find('{%s}Assertion' % SAML)
        inner.find('{%s}Issuer' % SAML).addnext(etree.fromstring(SIGNATURE_PLACEHOLDER))
        signed = etree.tostring(sign_xml(root, self.key, self.cert, '_inner', algorithm='sha256'))
        self.assertFalse(verify_xml_signature(signed, self.cert))

    def test_sign_with_invalid_material(self):
        root = _document()
        root.find('{%s}Issuer' % SAML).addnext(etree.fromstring(SIGNATURE_PLACEHOLDER))
        with pytest.raises(CryptoMaterialError):
            sign_xml(root, 'garbage', self.cert, '_outer')
        with pytest.raises(CryptoMaterialError):
            sign_xml(root, self.key, 'garbage', '_outer')


def test_fingerprint_regex_is_hex_only():
    cert, _ = certificate('idp')
    assert re.match(r'^[0-9A-F:]+$', certificate_fingerprint(cert, 'sha512'))
