from collections import namedtuple
from urllib.parse import urlparse

from voluptuous import REMOVE_EXTRA, Any, Invalid, Schema, Url

from samlidp import log
from samlidp.exceptions import InvalidServiceProvider, MetadataNotFoundError

logger = log.logger

LOGOUT_URL_ALIASES = ('assertion_consumer_logout_service_url', 'logout_service_url')

SERVICE_PROVIDER_FIELDS = {
    'issuer': str,
    'cert': Any(str, None),
    'fingerprint': Any(str, None),
    'acs_url': Any(Url(), None),
    'response_hosts': [str],
    'logout_url': Any(Url(), None),
    'sign_authn_request': bool,
}

SERVICE_PROVIDER_SCHEMA = Schema(SERVICE_PROVIDER_FIELDS, extra=REMOVE_EXTRA)

_ServiceProvider = namedtuple(
    'ServiceProvider',
    ['issuer', 'cert', 'fingerprint', 'acs_url', 'response_hosts', 'logout_url', 'sign_authn_request'],
)


class ServiceProvider(_ServiceProvider):
    """
    Immutable record describing a Service Provider.

    Build it with ``ServiceProvider.from_dict`` so that the values are
    validated; ``logout_url`` may also be given as
    ``assertion_consumer_logout_service_url`` or ``logout_service_url``.
    """
    __slots__ = ()

    @classmethod
    def from_dict(cls, data, issuer=None):
        data = dict(data)
        for alias in LOGOUT_URL_ALIASES:
            if alias in data:
                value = data.pop(alias)
                data.setdefault('logout_url', value)
        if issuer is not None:
            data.setdefault('issuer', issuer)
        try:
            data = SERVICE_PROVIDER_SCHEMA(data)
        except Invalid as e:
            raise InvalidServiceProvider(data.get('issuer'), str(e))
        if data.get('sign_authn_request') and not data.get('cert'):
            raise InvalidServiceProvider(
                data.get('issuer'),
                'a certificate is required to verify signed requests'
            )
        return cls(
            issuer=data.get('issuer'),
            cert=data.get('cert'),
            fingerprint=data.get('fingerprint'),
            acs_url=data.get('acs_url'),
            response_hosts=tuple(data.get('response_hosts', ())),
            logout_url=data.get('logout_url'),
            sign_authn_request=data.get('sign_authn_request', False),
        )

    @property
    def acceptable_response_hosts(self):
        if self.response_hosts:
            return frozenset(host.lower() for host in self.response_hosts)
        return frozenset(
            urlparse(url).hostname for url in (self.acs_url, self.logout_url) if url
        )


class ServiceProviderDirectory(object):
    """
    Resolves issuers (entity ids) to ServiceProvider records.

    Args:
        finder (callable): Takes an entity id and returns a dict,
            a ServiceProvider or None. Optional.
        records (iterable of ServiceProvider): Statically configured
            records, preferred over the finder.
    """

    def __init__(self, finder=None, records=None):
        self._finder = finder
        self._records = {record.issuer: record for record in records or []}

    @classmethod
    def from_config(cls, entries, finder=None):
        return cls(
            finder=finder,
            records=[ServiceProvider.from_dict(entry) for entry in entries or []],
        )

    def load(self, entity_id):
        """
        Loads the record of a Service Provider.

        Args:
            entity_id (str): Entity id of the SP (usually a URL or a URN).

        Returns:
            A ServiceProvider instance.

        Raises:
            MetadataNotFoundError: If no record is associated to the
                entity id.
            InvalidServiceProvider: If the finder returned an invalid record.
        """
        entity_id = entity_id.strip()
        record = self._records.get(entity_id)
        if record is None and self._finder is not None:
            record = self._finder(entity_id)
        if record is None:
            raise MetadataNotFoundError(entity_id)
        if isinstance(record, ServiceProvider):
            return record
        return ServiceProvider.from_dict(record, issuer=entity_id)

    def find(self, entity_id):
        """Like ``load`` but returns None instead of raising."""
        if not entity_id:
            return None
        try:
            return self.load(entity_id)
        except MetadataNotFoundError:
            logger.debug("Unknown entityId '{}`".format(entity_id))
        except InvalidServiceProvider as e:
            logger.debug(e)
        return None
