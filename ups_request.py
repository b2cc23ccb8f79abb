#!/usr/bin/env python3
"""
UPS Request Module

This module sends XML requests to the UPS API. It takes care of the OAuth
client-credentials token (cached until it expires), posts the request XML to
the given endpoint and turns the XML reply into either a UPSResponse or a
UPSError describing what went wrong.
"""

import base64
import hashlib
import logging
import os
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime

import requests

from token_cache import MappingTokenCache, TokenRecord

# Set up logging
logger = logging.getLogger(__name__)

# UPS OAuth endpoints
UPS_OAUTH_URL = 'https://onlinetools.ups.com/security/v1/oauth/token'
UPS_CIE_OAUTH_URL = 'https://wwwcie.ups.com/security/v1/oauth/token'

TOKEN_CACHE_KEY = 'ups_token'  # prefix, see token_cache_key()
TOKEN_EXPIRY_MARGIN = 10  # seconds

UNEXPECTED_FORMAT = 'Failure: response is in an unexpected format.'

# Shared by clients built with create_ups_request() when no cache is given
_default_cache = MappingTokenCache()


def token_cache_key(token_url, public_key):
    """
    Cache key for tokens issued by token_url to public_key.

    The key is hashed so the client id never shows up in cache backends or logs.
    """
    digest = hashlib.sha256(f"{token_url}\n{public_key}".encode("utf-8")).hexdigest()
    return f"{TOKEN_CACHE_KEY}:{digest[:32]}"


class UPSError(Exception):
    """Base class for all UPS request failures."""


class InvalidResponseError(UPSError):
    """UPS answered, but the reply is malformed or reports a failure."""


class RequestError(UPSError):
    """The request could not be completed (network error, HTTP error, bad token reply)."""


@dataclass(frozen=True)
class OutboundRequest:
    """The arguments of a single call to UPSRequest.send()."""
    access: str
    request: str
    endpoint_url: str


class UPSResponse:
    """Successful UPS reply: the decoded body and its parsed XML tree."""

    def __init__(self, text, response):
        self._text = text
        self._response = response

    @property
    def text(self):
        return self._text

    @property
    def response(self):
        return self._response

    def find(self, path):
        return self._response.find(path)

    def findtext(self, path, default=None):
        return self._response.findtext(path, default)


class RequestResult:
    """
    Outcome of UPSRequest.send(): exactly one of response or error is set.

    Use unwrap() to get the response or raise the error.
    """

    def __init__(self, response=None, error=None):
        if (response is None) == (error is None):
            raise ValueError("RequestResult needs exactly one of response or error")
        self.response = response
        self.error = error

    @classmethod
    def success(cls, response):
        return cls(response=response)

    @classmethod
    def failure(cls, error):
        return cls(error=error)

    @property
    def ok(self):
        return self.error is None

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.response


class TokenManager:
    """Supplies a valid UPS bearer token, requesting a new one when the cached one expired."""

    def __init__(self, public_key, private_key, cache=None, session=None,
                 token_url=UPS_OAUTH_URL, timeout=None, clock=time.time):
        self.public_key = public_key
        self.private_key = private_key
        self.cache = cache if cache is not None else MappingTokenCache()
        self.session = session if session is not None else requests.Session()
        self.token_url = token_url
        self.timeout = timeout
        self.clock = clock
        self.cache_key = token_cache_key(token_url, public_key)

    def get_token(self):
        """
        Get a bearer token, from the cache when it is still valid.

        Returns:
            str: The access token

        Raises:
            RequestError: If a new token was needed and could not be obtained
        """
        record = self.cache.get_valid(self.cache_key, self.clock())
        if record is not None:
            logger.debug("Using cached UPS OAuth token")
            return record.access_token

        return self.fetch_token()

    def fetch_token(self):
        """
        Request a new token from the UPS OAuth endpoint and cache it.

        The cache is only written once a complete token reply was parsed.

        Returns:
            str: The new access token

        Raises:
            RequestError: If the endpoint is unreachable, answers with an
                HTTP error or returns something other than a token
        """
        credentials = base64.b64encode(
            f"{self.public_key}:{self.private_key}".encode('utf-8')
        ).decode('ascii')

        headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Authorization': f'Basic {credentials}',
        }

        logger.info(f"Sending UPS OAuth token request to {self.token_url}")

        try:
            response = self.session.post(
                self.token_url,
                headers=headers,
                data='grant_type=client_credentials',
                timeout=self.timeout
            )
            response.raise_for_status()
            token_data = response.json()
            access_token = token_data['access_token']
            expires_in = int(token_data['expires_in'])
        except requests.RequestException as e:
            raise RequestError(f"Failure: could not obtain UPS OAuth token: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise RequestError("Failure: UPS OAuth token response is malformed.") from e

        if not access_token:
            raise RequestError("Failure: UPS OAuth token response is malformed.")

        expires_at = int(self.clock()) + expires_in - TOKEN_EXPIRY_MARGIN
        self.cache.set(self.cache_key, TokenRecord(access_token, expires_at))
        logger.info(f"Obtained UPS OAuth token (expires in {expires_in} seconds)")

        return access_token

    def clear(self):
        """Forget the cached token so the next call requests a new one."""
        self.cache.delete(self.cache_key)


class UPSRequest:
    """
    Client for a single XML request/response exchange with the UPS API.

    Both the token request and the API request go through the same HTTP
    session, so tests (or callers) can swap in their own.
    """

    def __init__(self, public_key, private_key, cache=None, session=None,
                 token_url=UPS_OAUTH_URL, timeout=None, logger=None, clock=time.time):
        self.timeout = timeout
        self.last_request = None
        session = session if session is not None else requests.Session()
        self.token_manager = TokenManager(
            public_key,
            private_key,
            cache=cache,
            session=session,
            token_url=token_url,
            timeout=timeout,
            clock=clock
        )
        self.set_logger(logger)
        self.set_client(session)

    def set_logger(self, new_logger=None):
        """Use new_logger for request/response logging (the module logger if None)."""
        self.logger = new_logger if new_logger is not None else logger

    def set_client(self, session=None):
        """Use session for all HTTP calls, or a new requests.Session if None."""
        self.client = session if session is not None else requests.Session()
        self.token_manager.session = self.client

    def request(self, access, request, endpoint_url):
        """
        Send request XML to UPS.

        Args:
            access (str): The access request XML
            request (str): The request XML
            endpoint_url (str): The UPS API endpoint URL

        Returns:
            UPSResponse: The parsed UPS reply

        Raises:
            InvalidResponseError: UPS reported a failure or replied in an unexpected format
            RequestError: The request failed at the transport level
        """
        return self.send(access, request, endpoint_url).unwrap()

    def send(self, access, request, endpoint_url):
        """
        Send request XML to UPS and report the outcome without raising.

        Args:
            access (str): The access request XML
            request (str): The request XML
            endpoint_url (str): The UPS API endpoint URL

        Returns:
            RequestResult: Holds a UPSResponse or a UPSError
        """
        self.last_request = OutboundRequest(access, request, endpoint_url)

        request_id = datetime.now().strftime('%Y%m%d%H%M%S%f')
        self.logger.info(f"Request To UPS API [{request_id}]: {endpoint_url}")
        self.logger.debug(f"Request [{request_id}] to {endpoint_url}: {request}")

        try:
            headers = {
                'Content-type': 'application/x-www-form-urlencoded; charset=utf-8',
                'Accept-Charset': 'UTF-8',
                'Authorization': f'Bearer {self.token_manager.get_token()}',
            }
            response = self.client.post(
                endpoint_url,
                data=request.encode('utf-8'),
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
        except RequestError as e:
            self.logger.critical(f"{e} [{request_id}]: {endpoint_url}")
            return RequestResult.failure(e)
        except requests.RequestException as e:
            self.logger.critical(f"{e} [{request_id}]: {endpoint_url}")
            error = RequestError(f"Failure: {e}")
            error.__cause__ = e
            return RequestResult.failure(error)

        body = self.convert_encoding(response)

        self.logger.info(f"Response from UPS API [{request_id}]: {endpoint_url}")
        self.logger.debug(f"Response [{request_id}] from {endpoint_url}: {body}")

        if response.status_code != 200:
            return self._invalid(
                f"Failure: unexpected HTTP status {response.status_code}.", request_id, endpoint_url
            )

        return self.parse_response(body, request_id, endpoint_url)

    def parse_response(self, body, request_id, endpoint_url):
        """Turn a decoded UPS reply into a RequestResult based on Response/ResponseStatusCode."""
        try:
            xml = ET.fromstring(body)
        except ET.ParseError:
            return self._invalid(UNEXPECTED_FORMAT, request_id, endpoint_url)

        status_code = xml.find('Response/ResponseStatusCode')
        if xml.find('Response') is None or status_code is None:
            return self._invalid(UNEXPECTED_FORMAT, request_id, endpoint_url)

        status = (status_code.text or '').strip()

        if status == '1':
            return RequestResult.success(UPSResponse(body, xml))

        if status == '0':
            description = xml.findtext('Response/Error/ErrorDescription', '')
            error_code = xml.findtext('Response/Error/ErrorCode', '')
            return self._invalid(f"Failure: {description} ({error_code})", request_id, endpoint_url)

        return self._invalid(
            f"Failure: unexpected response status code {status}.", request_id, endpoint_url
        )

    def convert_encoding(self, response):
        """
        Decode the response body to text.

        Uses the charset declared in the Content-Type header, then the
        detected one, then falls back to UTF-8 with replacement characters.
        """
        content_type = response.headers.get('Content-Type', '')
        encoding = response.encoding if 'charset' in content_type.lower() else None
        encoding = encoding or response.apparent_encoding

        if encoding:
            try:
                return response.content.decode(encoding)
            except (LookupError, UnicodeDecodeError):
                self.logger.warning(f"Could not decode UPS response as {encoding}, falling back to UTF-8")

        return response.content.decode('utf-8', errors='replace')

    def _invalid(self, message, request_id, endpoint_url):
        self.logger.warning(f"{message} [{request_id}]: {endpoint_url}")
        return RequestResult.failure(InvalidResponseError(message))


def _env_flag(name):
    return os.environ.get(name, '').strip().lower() in ('1', 'true', 'yes')


def create_ups_request(cache=None, session=None, logger=None, token_url=None):
    """
    Create a UPSRequest configured from environment variables.

    Reads UPS_CLIENT_ID and UPS_CLIENT_SECRET (required), UPS_OAUTH_URL,
    UPS_USE_CIE and UPS_TIMEOUT.

    Args:
        cache (TokenCache, optional): Token storage, a shared in-process cache if omitted
        session (requests.Session, optional): HTTP session to use
        logger (logging.Logger, optional): Logger for request/response logging
        token_url (str, optional): Token endpoint, overrides UPS_OAUTH_URL and UPS_USE_CIE

    Returns:
        UPSRequest: A configured client

    Raises:
        ValueError: If a required variable is missing or UPS_TIMEOUT is not a number
    """
    client_id = os.environ.get('UPS_CLIENT_ID')
    client_secret = os.environ.get('UPS_CLIENT_SECRET')

    if not client_id:
        raise ValueError("UPS_CLIENT_ID is empty or not set")
    if not client_secret:
        raise ValueError("UPS_CLIENT_SECRET is empty or not set")

    if not token_url:
        token_url = os.environ.get('UPS_OAUTH_URL')
    if not token_url:
        token_url = UPS_CIE_OAUTH_URL if _env_flag('UPS_USE_CIE') else UPS_OAUTH_URL

    timeout = os.environ.get('UPS_TIMEOUT')
    if timeout:
        try:
            timeout = float(timeout)
        except ValueError:
            raise ValueError(f"UPS_TIMEOUT must be a number of seconds, got {timeout!r}")
    else:
        timeout = None

    return UPSRequest(
        client_id,
        client_secret,
        cache=cache if cache is not None else _default_cache,
        session=session,
        token_url=token_url,
        timeout=timeout,
        logger=logger
    )
