from samlidp.request import Request


class BaseRequestParser(object):

    def __init__(self, params, request_class=None, **kwargs):
        self._params = params
        self._request_class = request_class or Request
        self._kwargs = kwargs

    def _extract(self, key):
        value = self._params.get(key)
        # parse_qs style mappings hold lists of values
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return value


class HTTPRedirectRequestParser(BaseRequestParser):
    """
    Builds a Request from the query string of an HTTP-Redirect binding
    message. Missing parameters never raise, they only make the request
    invalid.
    """

    def parse(self):
        return self._request_class.from_deflated_request(
            self._extract('SAMLRequest'),
            relay_state=self._extract('RelayState'),
            sig_algorithm=self._extract('SigAlg'),
            signature=self._extract('Signature'),
            **self._kwargs
        )


class HTTPPostRequestParser(BaseRequestParser):
    """
    Builds a Request from the form of an HTTP-POST binding message.
    """

    def parse(self):
        return self._request_class.from_post_request(
            self._extract('SAMLRequest'),
            relay_state=self._extract('RelayState'),
            **self._kwargs
        )
