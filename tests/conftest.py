"""Shared test fixtures for pytest.

The HTTP session is a MagicMock standing in for requests.Session; it hands
back real requests.Response objects so raise_for_status(), json() and
apparent_encoding behave as they do against UPS.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from token_cache import MappingTokenCache
from ups_request import UPSRequest, token_cache_key

TOKEN_URL = "https://wwwcie.ups.com/security/v1/oauth/token"
ENDPOINT_URL = "https://wwwcie.ups.com/ups.app/xml/Track"
PUBLIC_KEY = "public-key-abc"
PRIVATE_KEY = "private-key-xyz"
CACHE_KEY = token_cache_key(TOKEN_URL, PUBLIC_KEY)


def make_response(status_code=200, content=b"", headers=None, url=ENDPOINT_URL):
    response = requests.Response()
    response.status_code = status_code
    response._content = content
    response.headers.update(headers or {})
    response.encoding = requests.utils.get_encoding_from_headers(response.headers)
    response.reason = "OK" if status_code < 400 else "Error"
    response.url = url
    return response


def token_response(access_token="token-1", expires_in=3600):
    body = {"access_token": access_token, "expires_in": str(expires_in), "token_type": "Bearer"}
    return make_response(200, json.dumps(body).encode("utf-8"),
                         {"Content-Type": "application/json"}, url=TOKEN_URL)


def xml_response(xml, status_code=200, charset="utf-8"):
    headers = {"Content-Type": f"application/xml; charset={charset}"} if charset else {}
    content = xml.encode(charset or "utf-8")
    return make_response(status_code, content, headers)


SUCCESS_XML = (
    '<?xml version="1.0"?>'
    "<TrackResponse><Response>"
    "<TransactionReference><CustomerContext>ctx</CustomerContext></TransactionReference>"
    "<ResponseStatusCode>1</ResponseStatusCode>"
    "<ResponseStatusDescription>Success</ResponseStatusDescription>"
    "</Response><Shipment><ShipmentIdentificationNumber>1Z12345E0291980793</ShipmentIdentificationNumber>"
    "</Shipment></TrackResponse>"
)

FAILURE_XML = (
    '<?xml version="1.0"?>'
    "<TrackResponse><Response>"
    "<ResponseStatusCode>0</ResponseStatusCode>"
    "<ResponseStatusDescription>Failure</ResponseStatusDescription>"
    "<Error><ErrorSeverity>Hard</ErrorSeverity><ErrorCode>151018</ErrorCode>"
    "<ErrorDescription>Invalid tracking number</ErrorDescription></Error>"
    "</Response></TrackResponse>"
)


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache():
    return MappingTokenCache()


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session, cache, clock):
    return UPSRequest(PUBLIC_KEY, PRIVATE_KEY, cache=cache, session=session,
                      token_url=TOKEN_URL, clock=clock)


def calls_to(session, url):
    return [c for c in session.post.call_args_list if c.args and c.args[0] == url]
