from lxml.builder import ElementMaker
from lxml.etree import tostring

from samlidp.settings import NAMEID_FORMAT_EMAIL_ADDRESS, NSMAP, SAML, SAMLP, SCM_BEARER, VERSION

samlp_maker = ElementMaker(
    namespace=SAMLP,
    nsmap=dict(samlp=SAMLP),
)

saml_maker = ElementMaker(
    namespace=SAML,
    nsmap=dict(saml=SAML),
)

MAKERS = {
    'saml': saml_maker,
    'samlp': samlp_maker,
}


class SamlMixin(object):
    saml_type = None
    defaults = {}

    def __init__(self, attrib=None, text=None):
        E = MAKERS.get(self.saml_type)
        attributes = self.defaults.copy()
        attributes.update(attrib or {})
        self._element = getattr(E, self.tag())(
            **{k: v for k, v in attributes.items() if v is not None}
        )
        if text is not None:
            self._element.text = text

    def to_xml(self):
        return tostring(self.tree)

    @property
    def tree(self):
        return self._element

    def append(self, el):
        self.tree.append(el.tree)

    @classmethod
    def tag(cls):
        return '{%s}' % NSMAP[cls.saml_type] + cls.__name__


class Response(SamlMixin):
    saml_type = 'samlp'
    defaults = {
        'Version': VERSION
    }


class LogoutResponse(SamlMixin):
    saml_type = 'samlp'
    defaults = {
        'Version': VERSION
    }


class Assertion(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Version': VERSION
    }


class Issuer(SamlMixin):
    saml_type = 'saml'


# AttributeStatement

class AttributeStatement(SamlMixin):
    saml_type = 'saml'


class Attribute(SamlMixin):
    saml_type = 'saml'


class AttributeValue(SamlMixin):
    saml_type = 'saml'

#####################


# AuthnStatement

class AuthnStatement(SamlMixin):
    saml_type = 'saml'


class AuthnContext(SamlMixin):
    saml_type = 'saml'


class AuthnContextClassRef(SamlMixin):
    saml_type = 'saml'

#####################


# Conditions

class Conditions(SamlMixin):
    saml_type = 'saml'


class AudienceRestriction(SamlMixin):
    saml_type = 'saml'


class Audience(SamlMixin):
    saml_type = 'saml'

#####################


# Subject

class Subject(SamlMixin):
    saml_type = 'saml'


class NameID(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Format': NAMEID_FORMAT_EMAIL_ADDRESS
    }


class SubjectConfirmation(SamlMixin):
    saml_type = 'saml'
    defaults = {
        'Method': SCM_BEARER
    }


class SubjectConfirmationData(SamlMixin):
    saml_type = 'saml'


#####################


# Status

class Status(SamlMixin):
    saml_type = 'samlp'


class StatusCode(SamlMixin):
    saml_type = 'samlp'

#####################


# Inbound requests, only used to locate elements

class AuthnRequest(SamlMixin):
    saml_type = 'samlp'


class LogoutRequest(SamlMixin):
    saml_type = 'samlp'


class RequestedAuthnContext(SamlMixin):
    saml_type = 'samlp'


class SessionIndex(SamlMixin):
    saml_type = 'samlp'
