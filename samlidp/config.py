import json

import yaml
from voluptuous import ALLOW_EXTRA, All, In, Invalid, Length, Required, Schema

from samlidp import log
from samlidp.crypto import DigestAlgorithm
from samlidp.exceptions import BadConfiguration, InvalidServiceProvider
from samlidp.spmetadata import SERVICE_PROVIDER_FIELDS, ServiceProviderDirectory

ALGORITHM_NAMES = [alg.value for alg in DigestAlgorithm]


class ConfigValidator(object):

    def __init__(self, confdata):
        self._confdata = confdata
        self._init_schema()
        self._init_custom_validators()

    def _init_schema(self):
        service_provider = dict(SERVICE_PROVIDER_FIELDS)
        service_provider[Required('issuer')] = service_provider.pop('issuer')
        self._schema = {
            'algorithm': All(str, In(ALGORITHM_NAMES)),
            'log_file': str,
            'service_providers': All(
                [Schema(service_provider, extra=ALLOW_EXTRA)],
                Length(min=0),
            ),
        }

    def _init_custom_validators(self):
        def check_signing_certificates(data):
            for sp in data.get('service_providers', []):
                if sp.get('sign_authn_request') and not sp.get('cert'):
                    raise Invalid(
                        'Service provider {} requires signed requests '
                        'but has no certificate'.format(sp['issuer'])
                    )
            return data

        def check_unique_issuers(data):
            issuers = [sp['issuer'] for sp in data.get('service_providers', [])]
            duplicates = sorted(set(i for i in issuers if issuers.count(i) > 1))
            if duplicates:
                raise Invalid(
                    'Duplicate service provider issuers: {}'.format(', '.join(duplicates))
                )
            return data

        self._custom_validators = [
            check_signing_certificates,
            check_unique_issuers,
        ]

    def validate(self):
        try:
            self._validate()
        except Invalid as e:
            self._fail(e)

    @staticmethod
    def _fail(exc):
        raise BadConfiguration(str(exc))

    def _validate(self):
        schema = Schema(
            All(self._schema, *self._custom_validators),
            extra=ALLOW_EXTRA,
        )
        schema(self._confdata)


class Config(object):
    """
    Process wide settings, read-only once built.

    Args:
        confdata (dict): Validated configuration data.
        finder (callable): Service provider lookup used for issuers that
            are not listed under ``service_providers``.
        logger: Diagnostic sink target, see ``log.make_sink``.
    """

    def __init__(self, confdata, finder=None, logger=None):
        self._confdata = confdata
        self._sink = log.make_sink(logger)
        self._service_providers = self._build_directory(finder)

    def _build_directory(self, finder):
        try:
            return ServiceProviderDirectory.from_config(
                self._confdata.get('service_providers', []), finder=finder)
        except InvalidServiceProvider as e:
            self._fail(str(e))

    @staticmethod
    def _fail(message):
        raise BadConfiguration(message)

    @property
    def algorithm(self):
        return self._confdata.get('algorithm')

    @property
    def log_file(self):
        return self._confdata.get('log_file')

    @property
    def sink(self):
        return self._sink

    @property
    def service_providers(self):
        return self._service_providers


class BaseConfigParser(object):

    def __init__(self, path):
        self._path = path
        self._fp = None

    def parse(self):
        try:
            return self._parse()
        except OSError:
            raise BadConfiguration(
                'Unable to read the configuration file: {}'.format(self._path))
        except Exception:
            raise BadConfiguration(
                'Syntax error in the configuration file: {}'.format(self._path))

    def _parse(self):
        with open(self._path, 'r') as fp:
            self._fp = fp
            return self._deserialize() or {}


class YAMLConfigParser(BaseConfigParser):

    def _deserialize(self):
        return yaml.safe_load(self._fp)


class JSONConfigParser(BaseConfigParser):

    def _deserialize(self):
        return json.load(self._fp)


def _get_parser_class(fileformat):
    try:
        return {
            'yaml': YAMLConfigParser,
            'json': JSONConfigParser,
        }[fileformat]
    except KeyError:
        raise BadConfiguration('Unknown configuration type: {}'.format(fileformat))


params = Config({})


def load(f_name, f_type='yaml', finder=None, logger=None):
    """
    Load configuration from a YAML or JSON file
    """
    global params
    parser = _get_parser_class(f_type)(f_name)
    confdata = parser.parse()
    ConfigValidator(confdata).validate()
    params = Config(confdata, finder=finder, logger=logger)
    if params.log_file:
        log.add_file_handler(params.log_file)
    return params


def configure(finder=None, logger=None, **confdata):
    """
    Builds the configuration programmatically, e.g.
    ``configure(algorithm='sha256', finder=lookup_sp, logger=print)``.
    """
    global params
    ConfigValidator(confdata).validate()
    params = Config(confdata, finder=finder, logger=logger)
    return params
