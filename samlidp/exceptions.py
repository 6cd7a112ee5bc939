class SamlIdpError(Exception):
    """Base exception class"""


class BadConfiguration(SamlIdpError):
    pass


class RequestParserError(SamlIdpError):
    pass


class SignatureVerificationError(SamlIdpError):
    pass


class CryptoMaterialError(SamlIdpError):
    pass


class InvalidServiceProvider(SamlIdpError):

    def __init__(self, entity_id, details):
        super(InvalidServiceProvider, self).__init__(
            'Invalid service provider record for {}: {}'.format(entity_id, details)
        )
        self.entity_id = entity_id
        self.details = details


class MetadataNotFoundError(SamlIdpError):

    def __init__(self, entity_id):
        super(MetadataNotFoundError, self).__init__(entity_id)
        self.entity_id = entity_id
