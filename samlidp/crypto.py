import base64
import binascii
import re
import zlib
from enum import Enum
from urllib.parse import urlencode

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.hashes import SHA1, SHA256, SHA384, SHA512, Hash
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from cryptography.x509 import load_pem_x509_certificate
from lxml import etree
from signxml import DigestAlgorithm as XMLDigestAlgorithm, SignatureConfiguration, SignatureMethod, XMLSigner, XMLVerifier
from signxml.exceptions import InvalidDigest, SignXMLException

from samlidp import log
from samlidp.exceptions import CryptoMaterialError, SignatureVerificationError
from samlidp.settings import (
    C14N_EXCLUSIVE, CANONICALIZATION_METHOD, KEY_INFO, SIG_RSA_SHA1, SIG_RSA_SHA256, SIG_RSA_SHA384,
    SIG_RSA_SHA512, SIGNATURE, SIGNED_INFO, SIGNED_PARAMS, X509_CERTIFICATE, X509_DATA,
)
from samlidp.utils import parse_xml

logger = log.logger

SHA_SUFFIX = re.compile(r'sha(\d+)$', re.IGNORECASE)


def deflate_and_base64_encode(msg):
    if not isinstance(msg, bytes):
        msg = msg.encode('utf-8')
    return base64.b64encode(zlib.compress(msg, 9)[2:-4])


def decode_base64_and_inflate(string):
    return zlib.decompress(base64.b64decode(string), -15)


class DigestAlgorithm(Enum):
    SHA1 = 'sha1'
    SHA256 = 'sha256'
    SHA384 = 'sha384'
    SHA512 = 'sha512'

    @classmethod
    def resolve(cls, *candidates):
        """
        Picks the algorithm for a signing or digest operation.

        The first candidate that is not None wins, so callers pass the
        per-call value before the configured default. With no candidate
        the result is SHA1. Names ('sha256'), members and algorithm URIs
        ending in 'sha<N>' are recognized; anything else falls back to SHA1
        rather than raising.
        """
        for candidate in candidates:
            if candidate is None:
                continue
            if isinstance(candidate, cls):
                return candidate
            return cls._from_name(str(candidate))
        return cls.SHA1

    @classmethod
    def _from_name(cls, name):
        match = SHA_SUFFIX.search(name.strip())
        if match:
            try:
                return cls('sha{}'.format(match.group(1)))
            except ValueError:
                pass
        logger.debug(
            "Unrecognized digest algorithm '{}', falling back to SHA1".format(name)
        )
        return cls.SHA1

    @property
    def hash_algorithm(self):
        return _HASHES[self]()

    @property
    def signature_uri(self):
        return _SIGNATURE_URIS[self]

    @property
    def xml_signature_method(self):
        return _XML_SIGNATURE_METHODS[self]

    @property
    def xml_digest_algorithm(self):
        return _XML_DIGEST_ALGORITHMS[self]

    def digest(self, data):
        if not isinstance(data, bytes):
            data = data.encode('utf-8')
        hasher = Hash(self.hash_algorithm)
        hasher.update(data)
        return hasher.finalize()


_HASHES = {
    DigestAlgorithm.SHA1: SHA1,
    DigestAlgorithm.SHA256: SHA256,
    DigestAlgorithm.SHA384: SHA384,
    DigestAlgorithm.SHA512: SHA512,
}

_SIGNATURE_URIS = {
    DigestAlgorithm.SHA1: SIG_RSA_SHA1,
    DigestAlgorithm.SHA256: SIG_RSA_SHA256,
    DigestAlgorithm.SHA384: SIG_RSA_SHA384,
    DigestAlgorithm.SHA512: SIG_RSA_SHA512,
}

_XML_SIGNATURE_METHODS = {
    DigestAlgorithm.SHA1: SignatureMethod.RSA_SHA1,
    DigestAlgorithm.SHA256: SignatureMethod.RSA_SHA256,
    DigestAlgorithm.SHA384: SignatureMethod.RSA_SHA384,
    DigestAlgorithm.SHA512: SignatureMethod.RSA_SHA512,
}

_XML_DIGEST_ALGORITHMS = {
    DigestAlgorithm.SHA1: XMLDigestAlgorithm.SHA1,
    DigestAlgorithm.SHA256: XMLDigestAlgorithm.SHA256,
    DigestAlgorithm.SHA384: XMLDigestAlgorithm.SHA384,
    DigestAlgorithm.SHA512: XMLDigestAlgorithm.SHA512,
}

# Fingerprint length in bytes -> algorithm that produced it
_FINGERPRINT_ALGORITHMS = {
    20: DigestAlgorithm.SHA1,
    32: DigestAlgorithm.SHA256,
    48: DigestAlgorithm.SHA384,
    64: DigestAlgorithm.SHA512,
}

XML_SIGNATURE_CONFIG = SignatureConfiguration(
    signature_methods=frozenset(alg.xml_signature_method for alg in DigestAlgorithm),
    digest_algorithms=frozenset(alg.xml_digest_algorithm for alg in DigestAlgorithm),
)


def pem_format(cert):
    return '\n'.join([
        '-----BEGIN CERTIFICATE-----',
        cert,
        '-----END CERTIFICATE-----',
    ])


def normalize_x509(cert):
    if isinstance(cert, bytes):
        cert = cert.decode('ascii')
    return ''.join(
        cert.replace(
            '-----BEGIN CERTIFICATE-----', ''
        ).replace(
            '-----END CERTIFICATE-----', ''
        ).strip().split()
    )


def load_certificate(cert):
    try:
        return load_pem_x509_certificate(
            pem_format(normalize_x509(cert)).encode('ascii')
        )
    except (ValueError, TypeError, AttributeError, UnicodeError) as e:
        raise CryptoMaterialError(
            'Unable to load the X509 certificate: {}'.format(e))


def load_private_key(key, password=None):
    if hasattr(key, 'sign') and hasattr(key, 'public_key'):
        return key
    if isinstance(key, str):
        key = key.encode('ascii')
    if isinstance(password, str):
        password = password.encode('utf-8')
    try:
        return load_pem_private_key(key, password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoMaterialError(
            'Unable to load the private key: {}'.format(e))


def certificate_fingerprint(cert, algorithm=None):
    """
    Colon separated, upper case hex digest of the DER encoded certificate.
    """
    algorithm = DigestAlgorithm.resolve(algorithm)
    digest = load_certificate(cert).fingerprint(algorithm.hash_algorithm)
    return ':'.join('{:02X}'.format(b) for b in bytearray(digest))


def fingerprint_matches(cert, fingerprint):
    expected = re.sub('[^0-9a-f]', '', fingerprint.lower())
    algorithm = _FINGERPRINT_ALGORITHMS.get(len(expected) // 2)
    if algorithm is None or len(expected) % 2:
        return False
    try:
        actual = certificate_fingerprint(cert, algorithm)
    except CryptoMaterialError:
        return False
    return actual.replace(':', '').lower() == expected


class RSASigner(object):

    def __init__(self, digest, key=None, padding=None):
        self._key = key
        self._digest = digest
        self._padding = padding or PKCS1v15()

    def sign(self, unsigned_data, key=None):
        if key is None:
            key = self._key
        return key.sign(unsigned_data, self._padding, self._digest)


class RSAVerifier(object):

    def __init__(self, digest, padding=None):
        self._digest = digest
        self._padding = padding or PKCS1v15()

    def verify(self, pubkey, signed_data, signature):
        try:
            pubkey.verify(signature, signed_data, self._padding, self._digest)
        except InvalidSignature:
            return False
        else:
            return True


def sign(data, private_key, algorithm=None, password=None):
    """
    Produces a detached RSA PKCS#1 v1.5 signature.

    Raises:
        CryptoMaterialError: If the key cannot be loaded or is not an RSA key.
    """
    if not isinstance(data, bytes):
        data = data.encode('utf-8')
    key = load_private_key(private_key, password)
    signer = RSASigner(DigestAlgorithm.resolve(algorithm).hash_algorithm)
    try:
        return signer.sign(data, key)
    except (TypeError, ValueError) as e:
        raise CryptoMaterialError('Unable to sign data: {}'.format(e))


class SHA1CompatibleXMLSigner(XMLSigner):
    """signxml refuses SHA1 by default, it stays available as the fallback algorithm."""

    def check_deprecated_methods(self):
        pass


def sign_xml(root, private_key, certificate, reference_id, algorithm=None, password=None):
    """
    Signs the element identified by ``reference_id`` with an enveloped
    signature. The signature replaces the ``ds:Signature Id="placeholder"``
    element found in ``root``.

    Returns:
        The signed root element.

    Raises:
        CryptoMaterialError: If key or certificate are unusable.
    """
    algorithm = DigestAlgorithm.resolve(algorithm)
    logger.debug('signing {} with {}'.format(reference_id, algorithm.value))
    key = load_private_key(private_key, password)
    load_certificate(certificate)
    signer = SHA1CompatibleXMLSigner(
        signature_algorithm=algorithm.xml_signature_method,
        digest_algorithm=algorithm.xml_digest_algorithm,
        c14n_algorithm=C14N_EXCLUSIVE,
    )
    try:
        return signer.sign(
            root,
            reference_uri='#{}'.format(reference_id),
            key=key,
            cert=pem_format(normalize_x509(certificate)),
        )
    except (SignXMLException, TypeError, ValueError) as e:
        raise CryptoMaterialError('Unable to sign the message: {}'.format(e))


def build_signed_data(params, req_type='SAMLRequest'):
    """Query string covered by a redirect binding signature."""
    keys = [req_type] + SIGNED_PARAMS[1:]
    return '&'.join(
        [urlencode({k: params[k]})
         for k in keys
         if params.get(k) is not None],
    ).encode('ascii')


def sign_http_redirect(xmlstr, key, relay_state=None, req_type='SAMLResponse', algorithm=None, password=None):
    logger.debug('http-redirect signing')
    logger.debug('request type {}'.format(req_type))
    algorithm = DigestAlgorithm.resolve(algorithm)
    args = {
        req_type: deflate_and_base64_encode(xmlstr).decode('ascii'),
        'SigAlg': algorithm.signature_uri,
    }
    if relay_state is not None and relay_state.strip() != '':
        args['RelayState'] = relay_state
    signed_data = build_signed_data(args, req_type)
    args['Signature'] = base64.b64encode(
        sign(signed_data, key, algorithm, password)).decode('ascii')
    return urlencode(args)


class HTTPRedirectSignatureVerifier(object):

    def __init__(self, certificate, signed_data, signature, sig_alg, verifiers=None):
        self._cert = certificate
        self._signed_data = signed_data
        self._signature = signature
        self._sig_alg = sig_alg
        self._verifiers = verifiers or {}

    def verify(self):
        self._ensure_complete()
        signature = self._decode_signature()
        pubkey = self._get_pubkey()
        verifier = self._get_verifier()
        if not verifier.verify(pubkey, self._signed_data, signature):
            self._fail('Signature verification failed.')

    def _ensure_complete(self):
        if not self._signature or not self._sig_alg or not self._signed_data:
            self._fail('Missing signature, signature algorithm or signed data.')

    @staticmethod
    def _fail(message):
        raise SignatureVerificationError(message)

    def _decode_signature(self):
        try:
            return base64.b64decode(self._signature)
        except (binascii.Error, ValueError, TypeError):
            self._fail("Unable to decode the 'Signature' parameter.")

    def _get_pubkey(self):
        try:
            pubkey = load_certificate(self._cert).public_key()
        except CryptoMaterialError as e:
            self._fail(str(e))
        if not isinstance(pubkey, RSAPublicKey):
            self._fail('The certificate does not hold an RSA public key.')
        return pubkey

    def _get_verifier(self):
        algorithm = DigestAlgorithm.resolve(self._sig_alg)
        return self._verifiers.get(algorithm) or RSAVerifier(algorithm.hash_algorithm)


class XMLSignatureVerifier(object):

    def __init__(self, certificate, xml, c14n_algorithm=None, fingerprint=None, verifier=None):
        self._cert = certificate
        self._xml = xml
        self._c14n_algorithm = c14n_algorithm
        self._fingerprint = fingerprint
        self._verifier = verifier or XMLVerifier()
        self._xml_doc = None

    def verify(self):
        self._xml_doc = self._parse()
        self._ensure_canonicalization()
        self._ensure_matching_certificate()
        self._verify_signature()

    def _parse(self):
        xml_doc = parse_xml(self._xml)
        if xml_doc is None:
            self._fail('The signed document is not well formed XML.')
        return xml_doc

    @staticmethod
    def _fail(message):
        raise SignatureVerificationError(message)

    def _extract(self, key):
        return {
            'c14n': '{}/{}/{}'.format(SIGNATURE, SIGNED_INFO, CANONICALIZATION_METHOD),
            'certificate': '{}/{}/{}/{}'.format(SIGNATURE, KEY_INFO, X509_DATA, X509_CERTIFICATE),
        }[key]

    def _ensure_canonicalization(self):
        if self._c14n_algorithm is None:
            return
        method = self._xml_doc.find(self._extract('c14n'))
        if method is None or method.get('Algorithm') != self._c14n_algorithm:
            self._fail(
                "The canonicalization method is not '{}'.".format(self._c14n_algorithm)
            )

    def _ensure_matching_certificate(self):
        if not self._fingerprint:
            return
        request_cert = self._xml_doc.find(self._extract('certificate'))
        if request_cert is None or not request_cert.text:
            return
        if not fingerprint_matches(request_cert.text, self._fingerprint):
            self._fail(
                'The X509 certificate in the request does not match '
                'the service provider fingerprint.'
            )

    def _verify_signature(self):
        try:
            pubkey = load_certificate(self._cert).public_key()
        except CryptoMaterialError:
            self._fail('The service provider certificate is not usable.')
        if not isinstance(pubkey, RSAPublicKey):
            self._fail('The certificate does not hold an RSA public key.')
        cert = pem_format(normalize_x509(self._cert))
        try:
            result = self._verifier.verify(
                self._xml, x509_cert=cert, expect_config=XML_SIGNATURE_CONFIG)
        except InvalidDigest:
            self._fail('The digest value is not valid.')
        except (SignXMLException, etree.LxmlError, InvalidSignature, ValueError, TypeError) as e:
            self._fail('Signature verification failed: {}'.format(e))
        self._ensure_root_is_signed(result)

    def _ensure_root_is_signed(self, result):
        # The signature must cover the document root, not some other element.
        signed_xml = getattr(result, 'signed_xml', None)
        if signed_xml is None or signed_xml.get('ID') != self._xml_doc.get('ID') \
                or etree.QName(signed_xml).text != etree.QName(self._xml_doc).text:
            self._fail('The signature does not cover the whole message.')


def verify_signature(signed_data, signature, certificate, algorithm=None):
    """Detached signature check, never raises."""
    try:
        HTTPRedirectSignatureVerifier(certificate, signed_data, signature, algorithm).verify()
    except SignatureVerificationError as e:
        logger.debug(e)
        return False
    return True


def verify_xml_signature(xml, certificate, c14n_algorithm=None, fingerprint=None):
    """Enveloped XML signature check, never raises."""
    if isinstance(xml, str):
        xml = xml.encode('utf-8')
    try:
        XMLSignatureVerifier(
            certificate, xml, c14n_algorithm=c14n_algorithm, fingerprint=fingerprint
        ).verify()
    except SignatureVerificationError as e:
        logger.debug(e)
        return False
    return True
