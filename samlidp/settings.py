# SAML2

SAML = 'urn:oasis:names:tc:SAML:2.0:assertion'
SAMLP = 'urn:oasis:names:tc:SAML:2.0:protocol'
DS = 'http://www.w3.org/2000/09/xmldsig#'

NSMAP = {'saml': SAML, 'samlp': SAMLP, 'ds': DS}
VERSION = '2.0'

STATUS_SUCCESS = 'urn:oasis:names:tc:SAML:2.0:status:Success'

NAMEID_FORMAT_EMAIL_ADDRESS = 'urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress'
SCM_BEARER = 'urn:oasis:names:tc:SAML:2.0:cm:bearer'

EMAIL_ADDRESS_CLAIM = 'http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress'
# Only authentication context the IdP asserts.
AUTHN_CONTEXT_WINDOWS = 'urn:federation:authentication:windows'

BINDING_HTTP_POST = 'urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST'
BINDING_HTTP_REDIRECT = 'urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect'

AUTHN_REQUEST = 'AuthnRequest'
LOGOUT_REQUEST = 'LogoutRequest'

################

# Crypto

SIG_RSA_SHA1 = 'http://www.w3.org/2000/09/xmldsig#rsa-sha1'
SIG_RSA_SHA256 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha256'
SIG_RSA_SHA384 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha384'
SIG_RSA_SHA512 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha512'

C14N_EXCLUSIVE = 'http://www.w3.org/2001/10/xml-exc-c14n#'

SIG_NS = '{%s}' % DS

SIGNATURE = '{}Signature'.format(SIG_NS)
SIGNED_INFO = '{}SignedInfo'.format(SIG_NS)
CANONICALIZATION_METHOD = '{}CanonicalizationMethod'.format(SIG_NS)
KEY_INFO = '{}KeyInfo'.format(SIG_NS)
X509_DATA = '{}X509Data'.format(SIG_NS)
X509_CERTIFICATE = '{}X509Certificate'.format(SIG_NS)

SIGNED_PARAMS = ['SAMLRequest', 'RelayState', 'SigAlg']

SIGNATURE_PLACEHOLDER = (
    '<ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#" Id="placeholder"></ds:Signature>'
)

########


# Validity windows (seconds), all relative to the same captured instant
NOT_BEFORE_SKEW = 5
SUBJECT_CONFIRMATION_LIFETIME = 3 * 60
CONDITIONS_LIFETIME = 60 * 60
