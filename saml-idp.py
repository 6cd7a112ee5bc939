import argparse
import logging
import sys

from samlidp import config, log
from samlidp.exceptions import BadConfiguration
from samlidp.parser import HTTPPostRequestParser, HTTPRedirectRequestParser

logger = log.logger

PARSERS = {
    'redirect': HTTPRedirectRequestParser,
    'post': HTTPPostRequestParser,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description='Decode and validate a captured SAMLRequest.'
    )
    parser.add_argument(
        '-c', dest='config', help='Path to configuration file.',
        default='./conf/config.yaml'
    )
    parser.add_argument(
        '-ct', dest='configuration_type',
        help='Configuration type [yaml|json]', default='yaml'
    )
    parser.add_argument(
        '-b', dest='binding', choices=sorted(PARSERS),
        help='Binding the request was received with.', default='redirect'
    )
    parser.add_argument('--relay-state', dest='relay_state')
    parser.add_argument('--sig-alg', dest='sig_alg')
    parser.add_argument('--signature', dest='signature')
    parser.add_argument('saml_request', help='Encoded SAMLRequest value.')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config.load(args.config, args.configuration_type)
    except BadConfiguration as e:
        logger.error(e)
        return 2
    params = {
        'SAMLRequest': args.saml_request,
        'RelayState': args.relay_state,
        'SigAlg': args.sig_alg,
        'Signature': args.signature,
    }
    request = PARSERS[args.binding](params).parse()
    logger.info('kind: {}'.format(request.kind))
    logger.info('id: {}'.format(request.request_id))
    logger.info('issuer: {}'.format(request.issuer))
    logger.info('response url: {}'.format(request.response_url))
    if not request.is_valid():
        return 1
    logger.info('request is valid')
    return 0


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
