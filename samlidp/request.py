import binascii
import zlib
from base64 import b64decode
from urllib.parse import urlparse

from lxml import etree

from samlidp import config, log
from samlidp.crypto import build_signed_data, decode_base64_and_inflate, verify_signature, verify_xml_signature
from samlidp.exceptions import RequestParserError
from samlidp.saml import AuthnContextClassRef, AuthnRequest, Issuer, LogoutRequest, NameID, RequestedAuthnContext, \
    SessionIndex
from samlidp.settings import AUTHN_REQUEST, BINDING_HTTP_POST, BINDING_HTTP_REDIRECT, LOGOUT_REQUEST, SIGNATURE
from samlidp.utils import parse_xml, text_or_none

logger = log.logger

_UNRESOLVED = object()


def decode_saml_request(raw, binding=BINDING_HTTP_REDIRECT):
    """
    Turns an encoded SAMLRequest parameter back into XML bytes.

    Redirect binding values are base64 over a raw deflate stream; values
    that turn out not to be compressed are returned as decoded. POST
    binding values are plain base64.

    Raises:
        RequestParserError: If the value is missing or is not base64.
    """
    if not raw:
        raise RequestParserError("Missing 'SAMLRequest'")
    if binding == BINDING_HTTP_REDIRECT:
        try:
            return decode_base64_and_inflate(raw)
        except (zlib.error, binascii.Error, ValueError, TypeError):
            pass
    try:
        return b64decode(raw)
    except (binascii.Error, ValueError, TypeError):
        raise RequestParserError("Unable to decode 'SAMLRequest'")


class Request(object):
    """
    An inbound AuthnRequest or LogoutRequest.

    Nothing in here raises on malformed or hostile input: decoding and
    parsing failures leave a request without a document, verification
    failures turn into False, and ``is_valid()`` reports the first failed
    check to the diagnostic sink.

    Args:
        raw_xml (str or bytes): The request XML.
        binding (str): Binding the request arrived with.
        saml_request (str): Encoded SAMLRequest covered by a detached
            (query string) signature.
        relay_state (str): RelayState parameter, if any.
        sig_algorithm (str): SigAlg parameter, if any.
        signature (str): Base64 Signature parameter, if any.
        directory: Service provider directory, defaults to the configured one.
        sink: Diagnostic sink, defaults to the configured one.
    """

    def __init__(self, raw_xml, binding=BINDING_HTTP_POST, saml_request=None, relay_state=None,
                 sig_algorithm=None, signature=None, directory=None, sink=None):
        self.raw_xml = raw_xml
        self.binding = binding
        self.saml_request = saml_request
        self.relay_state = relay_state
        self.sig_algorithm = sig_algorithm
        self.signature = signature
        self._directory = directory
        self._sink = log.make_sink(sink) if sink is not None else None
        self._document = parse_xml(raw_xml)
        self._service_provider = _UNRESOLVED

    @classmethod
    def from_deflated_request(cls, raw, saml_request=None, **kwargs):
        if saml_request is None:
            saml_request = raw
        return cls._from_encoded(
            raw, BINDING_HTTP_REDIRECT, saml_request=saml_request, **kwargs)

    @classmethod
    def from_post_request(cls, raw, **kwargs):
        return cls._from_encoded(raw, BINDING_HTTP_POST, **kwargs)

    @classmethod
    def _from_encoded(cls, raw, binding, **kwargs):
        try:
            raw_xml = decode_saml_request(raw, binding)
        except RequestParserError as e:
            logger.debug(e)
            raw_xml = b''
        return cls(raw_xml, binding=binding, **kwargs)

    @property
    def document(self):
        return self._document

    @property
    def kind(self):
        if self._document is None:
            return None
        return etree.QName(self._document).localname

    @property
    def is_authn_request(self):
        return self._document is not None and self._document.tag == AuthnRequest.tag()

    @property
    def is_logout_request(self):
        return self._document is not None and self._document.tag == LogoutRequest.tag()

    def _find(self, path):
        if self._document is None:
            return None
        return self._document.find(path)

    @property
    def request_id(self):
        if self._document is None:
            return None
        return self._document.get('ID')

    @property
    def issuer(self):
        return text_or_none(self._find(Issuer.tag()))

    @property
    def acs_url(self):
        if not self.is_authn_request:
            return None
        return self._document.get('AssertionConsumerServiceURL')

    @property
    def name_id(self):
        if not self.is_logout_request:
            return None
        return text_or_none(self._find(NameID.tag()))

    @property
    def session_index(self):
        if not self.is_logout_request:
            return None
        return text_or_none(self._find(SessionIndex.tag()))

    @property
    def requested_authn_context(self):
        return text_or_none(
            self._find('{}/{}'.format(RequestedAuthnContext.tag(), AuthnContextClassRef.tag()))
        )

    @property
    def directory(self):
        return self._directory or config.params.service_providers

    @property
    def sink(self):
        return self._sink or config.params.sink

    @property
    def service_provider(self):
        if self._service_provider is _UNRESOLVED:
            self._service_provider = self.directory.find(self.issuer)
        return self._service_provider

    @property
    def logout_url(self):
        sp = self.service_provider
        return sp.logout_url if sp is not None else None

    @property
    def response_url(self):
        if self.is_authn_request:
            return self.acs_url
        if self.is_logout_request:
            return self.logout_url
        return None

    @property
    def response_host(self):
        if not self.response_url:
            return None
        try:
            return urlparse(self.response_url).hostname
        except ValueError:
            return None

    def is_valid(self):
        if self._document is None:
            return self._invalid('Unable to decode SAML request')
        if self.service_provider is None:
            return self._invalid(
                'Unable to find service provider for issuer {}'.format(self.issuer or ''))
        if not (self.is_authn_request ^ self.is_logout_request):
            return self._invalid(
                'One and only one of {} and {} is supported, got {}'.format(
                    AUTHN_REQUEST, LOGOUT_REQUEST, self.kind))
        if not self._has_acceptable_signature():
            return self._invalid(
                'Signature is invalid for request {} from {}'.format(self.request_id, self.issuer))
        if self.response_url is None:
            return self._invalid(
                'Unable to find response url for {}'.format(self.issuer))
        acceptable_hosts = self.service_provider.acceptable_response_hosts
        if self.response_host not in acceptable_hosts:
            return self._invalid(
                'Response host {} is not among the acceptable hosts of {}: {}'.format(
                    self.response_host, self.issuer, ', '.join(sorted(acceptable_hosts))))
        return True

    def _invalid(self, message):
        self.sink.emit(message)
        return False

    @property
    def _embedded_signature(self):
        return self._find(SIGNATURE)

    @property
    def _signing_required(self):
        sp = self.service_provider
        return sp is None or sp.sign_authn_request

    def _has_acceptable_signature(self):
        if not self._signing_required:
            return True
        if self._embedded_signature is not None:
            return self._verify_embedded_signature()
        return self._verify_external_signature()

    def has_valid_signature(self):
        if not self._signing_required:
            return True
        return self._verify_embedded_signature()

    def has_valid_external_signature(self):
        if not self._signing_required:
            return True
        return self._verify_external_signature()

    def _verify_embedded_signature(self):
        sp = self.service_provider
        if sp is None or self._document is None:
            return False
        return verify_xml_signature(self.raw_xml, sp.cert, fingerprint=sp.fingerprint)

    def _verify_external_signature(self):
        sp = self.service_provider
        if sp is None or not self.saml_request:
            return False
        signed_data = build_signed_data({
            'SAMLRequest': self.saml_request,
            'RelayState': self.relay_state,
            'SigAlg': self.sig_algorithm,
        })
        return verify_signature(signed_data, self.signature, sp.cert, self.sig_algorithm)
