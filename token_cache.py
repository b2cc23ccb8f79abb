#!/usr/bin/env python3
"""
Token Cache Module

This module provides the storage used to keep a UPS OAuth access token
between calls, so a fresh token is only requested once the old one expires.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import namedtuple

# Set up logging
logger = logging.getLogger(__name__)

# Cached access token and the epoch second after which it must not be used
TokenRecord = namedtuple('TokenRecord', ['access_token', 'expires_at'])


class TokenCache(ABC):
    """Abstract base class for token storage backends."""

    @abstractmethod
    def get(self, key):
        """
        Look up a cached token.

        Args:
            key (str): Cache key

        Returns:
            TokenRecord: The stored record, or None if nothing is stored
        """
        pass

    @abstractmethod
    def set(self, key, record):
        """
        Store a token, replacing any previous record under the same key.

        Args:
            key (str): Cache key
            record (TokenRecord): Record to store
        """
        pass

    @abstractmethod
    def delete(self, key):
        """Remove the record stored under key, if any."""
        pass

    def get_valid(self, key, now=None):
        """
        Look up a cached token that has not expired yet.

        Args:
            key (str): Cache key
            now (float, optional): Current epoch time, defaults to time.time()

        Returns:
            TokenRecord: The stored record if still valid, otherwise None
        """
        record = self.get(key)
        if record is None:
            return None

        if now is None:
            now = time.time()

        if now < record.expires_at:
            return record

        logger.debug(f"Cached token under '{key}' expired at {record.expires_at}")
        return None


class MappingTokenCache(TokenCache):
    """
    Token cache backed by any dict-like object.

    Pass a web framework's session object to keep one token per user session,
    or leave it empty to share a plain dict across the process. The whole
    TokenRecord is written under a single key, so readers in other threads
    see either the old or the new record.
    """

    def __init__(self, store=None):
        self.store = store if store is not None else {}

    def get(self, key):
        record = self.store.get(key)
        if record is None:
            return None
        if isinstance(record, TokenRecord):
            return record
        # Session backends that serialize values hand back plain sequences;
        # anything else (e.g. a bare token string) is treated as a miss
        if not isinstance(record, (list, tuple)) or len(record) != 2:
            logger.debug(f"Ignoring unrecognized token entry under '{key}'")
            return None
        access_token, expires_at = record
        if not isinstance(access_token, str) or not isinstance(expires_at, (int, float)):
            logger.debug(f"Ignoring unrecognized token entry under '{key}'")
            return None
        return TokenRecord(access_token, expires_at)

    def set(self, key, record):
        self.store[key] = TokenRecord(*record)

    def delete(self, key):
        self.store.pop(key, None)
