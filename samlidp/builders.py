import base64
from copy import deepcopy
from datetime import timedelta

from lxml.etree import fromstring, tostring

from samlidp import config, log
from samlidp.crypto import DigestAlgorithm, sign_xml
from samlidp.saml import (
    Assertion, Attribute, AttributeStatement, AttributeValue, Audience, AudienceRestriction, AuthnContext,
    AuthnContextClassRef, AuthnStatement, Conditions, Issuer, LogoutResponse, NameID, Response, Status, StatusCode,
    Subject, SubjectConfirmation, SubjectConfirmationData,
)
from samlidp.settings import (
    AUTHN_CONTEXT_WINDOWS, CONDITIONS_LIFETIME, EMAIL_ADDRESS_CLAIM, NOT_BEFORE_SKEW, SIGNATURE_PLACEHOLDER,
    STATUS_SUCCESS, SUBJECT_CONFIRMATION_LIFETIME,
)
from samlidp.utils import reference_string, to_iso, utcnow

logger = log.logger


def _resolve_algorithm(raw_algorithm):
    return DigestAlgorithm.resolve(raw_algorithm, config.params.algorithm)


class AssertionBuilder(object):
    """
    Builds the Assertion issued to a Service Provider.

    All the time fields come from the single instant captured when the
    builder is created. ``raw()`` and ``digest()`` are computed on first
    use and stored. ``rebuild()`` regenerates the document but leaves the
    stored digest alone: call ``refresh_digest()`` when the digest has to
    follow the new document.

    The builder does not sign. A signature block prepared by the caller
    can be set on ``signature`` and is spliced in verbatim after Issuer.
    """

    def __init__(self, reference_id, issuer_uri, name_id, audience_uri, saml_request_id, saml_acs_url,
                 raw_algorithm=None, signature=None, clock=None):
        self.reference_id = reference_id
        self.issuer_uri = issuer_uri
        self.name_id = name_id
        self.audience_uri = audience_uri
        self.saml_request_id = saml_request_id
        self.saml_acs_url = saml_acs_url
        self.raw_algorithm = raw_algorithm
        self.signature = signature
        self.now = (clock or utcnow)()
        self._raw = None
        self._digest = None

    @property
    def algorithm(self):
        return _resolve_algorithm(self.raw_algorithm)

    @property
    def reference_string(self):
        return reference_string(self.reference_id)

    def raw(self):
        if self._raw is None:
            self._raw = self._fresh()
        return self._raw

    def rebuild(self):
        self._raw = self._fresh()
        return self._raw

    def digest(self):
        if self._digest is None:
            self._digest = self._encode()
        return self._digest

    def refresh_digest(self):
        self._digest = self._encode()
        return self._digest

    def _encode(self):
        return base64.b64encode(self.algorithm.digest(self.raw())).decode('ascii')

    @property
    def now_iso(self):
        return to_iso(self.now)

    @property
    def not_before(self):
        return to_iso(self.now - timedelta(seconds=NOT_BEFORE_SKEW))

    @property
    def not_on_or_after_subject(self):
        return to_iso(self.now + timedelta(seconds=SUBJECT_CONFIRMATION_LIFETIME))

    @property
    def not_on_or_after_condition(self):
        return to_iso(self.now + timedelta(seconds=CONDITIONS_LIFETIME))

    def _signature_element(self):
        if isinstance(self.signature, (str, bytes)):
            return fromstring(self.signature)
        return deepcopy(self.signature)

    def _fresh(self):
        assertion = Assertion(
            attrib=dict(
                ID=self.reference_string,
                IssueInstant=self.now_iso,
            )
        )
        assertion.append(Issuer(text=self.issuer_uri))
        if self.signature is not None:
            assertion.tree.append(self._signature_element())
        # Subject
        subject = Subject()
        subject.append(NameID(text=self.name_id))
        subject_confirmation = SubjectConfirmation()
        subject_confirmation.append(
            SubjectConfirmationData(
                attrib=dict(
                    InResponseTo=self.saml_request_id,
                    NotOnOrAfter=self.not_on_or_after_subject,
                    Recipient=self.saml_acs_url,
                )
            )
        )
        subject.append(subject_confirmation)
        assertion.append(subject)
        # Conditions
        conditions = Conditions(
            attrib=dict(
                NotBefore=self.not_before,
                NotOnOrAfter=self.not_on_or_after_condition,
            )
        )
        audience_restriction = AudienceRestriction()
        audience_restriction.append(Audience(text=self.audience_uri))
        conditions.append(audience_restriction)
        assertion.append(conditions)
        # Attributes
        attribute_statement = AttributeStatement()
        attribute = Attribute(attrib=dict(Name=EMAIL_ADDRESS_CLAIM))
        attribute.append(AttributeValue(text=self.name_id))
        attribute_statement.append(attribute)
        assertion.append(attribute_statement)
        # AuthnStatement
        authn_statement = AuthnStatement(
            attrib=dict(
                AuthnInstant=self.now_iso,
                SessionIndex=self.reference_string,
            )
        )
        authn_context = AuthnContext()
        authn_context.append(AuthnContextClassRef(text=AUTHN_CONTEXT_WINDOWS))
        authn_statement.append(authn_context)
        assertion.append(authn_statement)
        return assertion.to_xml()


class SignedMessageBuilder(object):
    """
    Signing capability composed into outbound message builders.

    ``sign`` places an enveloped signature immediately after the Issuer
    of the signed element (the root unless told otherwise).

    Raises:
        CryptoMaterialError: From ``sign``, when key or certificate are
            unusable. No partially signed document is returned.
    """

    def __init__(self, public_cert, private_key, algorithm=None, key_password=None):
        self.public_cert = public_cert
        self.private_key = private_key
        self.raw_algorithm = algorithm
        self.key_password = key_password

    @property
    def algorithm(self):
        return _resolve_algorithm(self.raw_algorithm)

    def sign(self, root, element=None):
        if element is None:
            element = root
        placeholder = fromstring(SIGNATURE_PLACEHOLDER)
        issuer = element.find(Issuer.tag())
        if issuer is None:
            element.insert(0, placeholder)
        else:
            issuer.addnext(placeholder)
        return sign_xml(
            root,
            self.private_key,
            self.public_cert,
            element.get('ID'),
            algorithm=self.algorithm,
            password=self.key_password,
        )


def _success_status():
    status = Status()
    status.append(StatusCode(attrib=dict(Value=STATUS_SUCCESS)))
    return status


class LogoutResponseBuilder(object):

    def __init__(self, response_id, issuer_uri, saml_slo_url, saml_request_id, algorithm, public_cert,
                 private_key, pv_key_password=None, clock=None):
        self.response_id = response_id
        self.issuer_uri = issuer_uri
        self.saml_slo_url = saml_slo_url
        self.saml_request_id = saml_request_id
        self.now = (clock or utcnow)()
        self._signer = SignedMessageBuilder(
            public_cert, private_key, algorithm=algorithm, key_password=pv_key_password)

    @property
    def response_id_string(self):
        return reference_string(self.response_id)

    def build(self):
        logger.debug('building LogoutResponse in response to {}'.format(self.saml_request_id))
        response = LogoutResponse(
            attrib=dict(
                ID=self.response_id_string,
                IssueInstant=to_iso(self.now),
                Destination=self.saml_slo_url,
                InResponseTo=self.saml_request_id,
            )
        )
        response.append(Issuer(text=self.issuer_uri))
        response.append(_success_status())
        return tostring(self._signer.sign(response.tree))

    def encoded(self):
        return base64.b64encode(self.build())


class ResponseBuilder(object):
    """
    Wraps an assertion into a samlp:Response addressed to the Service
    Provider's assertion consumer service.

    Args:
        assertion (AssertionBuilder): The assertion to deliver.
        signer (SignedMessageBuilder): Signs the response when given.
        sign_assertion (bool): Also sign the assertion itself.
    """

    def __init__(self, response_id, issuer_uri, saml_acs_url, saml_request_id, assertion, signer=None,
                 sign_assertion=False, clock=None):
        self.response_id = response_id
        self.issuer_uri = issuer_uri
        self.saml_acs_url = saml_acs_url
        self.saml_request_id = saml_request_id
        self.assertion = assertion
        self.sign_assertion = sign_assertion
        self.now = (clock or utcnow)()
        self._signer = signer

    @property
    def response_id_string(self):
        return reference_string(self.response_id)

    def build(self):
        logger.debug('building Response in response to {}'.format(self.saml_request_id))
        response = Response(
            attrib=dict(
                ID=self.response_id_string,
                IssueInstant=to_iso(self.now),
                Destination=self.saml_acs_url,
                InResponseTo=self.saml_request_id,
            )
        )
        response.append(Issuer(text=self.issuer_uri))
        response.append(_success_status())
        assertion = fromstring(self.assertion.raw())
        response.tree.append(assertion)
        root = response.tree
        if self._signer is not None:
            if self.sign_assertion:
                root = self._signer.sign(root, element=assertion)
            root = self._signer.sign(root)
        return tostring(root)

    def encoded(self):
        return base64.b64encode(self.build())
