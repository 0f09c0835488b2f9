#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Provides the ability to cache a single lazily loaded value.

## Overview

`CachedValue` holds a value obtained from a zero-argument `refresh_fn`. The
value is not retrieved when the object is created, only the first time
`CachedValue.value` is called. It is then reused until one of the following
happens:

- the optional `is_expired_fn`, called with the cached value, returns `True`;
- `CachedValue.invalidate` is called.

The credential chain uses this to hold on to the credentials produced by the
winning provider until that provider reports them as expired:

    >>> cv = CachedValue(provider.retrieve, lambda creds: creds.is_expired())
    >>> cv.value() is cv.value()
    True
"""

import logging
import threading

LOG = logging.getLogger(__name__)


class CachedValue:
    """Represents a lazily loaded value kept until it expires or is invalidated.

    This class is thread-safe. If `refresh_fn` raises, nothing is cached and
    the exception propagates to the caller of `value`.
    """

    def __init__(self, refresh_fn, is_expired_fn=None):
        self._refresh_fn = refresh_fn
        self._is_expired_fn = is_expired_fn
        self._lock = threading.Lock()
        self._value = None
        self._loaded = False

    def value(self):
        """Returns the value, loading it via `refresh_fn` when needed."""
        with self._lock:
            if not self._is_stale():
                LOG.debug("Loading value from cache")
                return self._value

            value = self._refresh_fn()
            self._value = value
            self._loaded = True
            LOG.debug("refreshed value and saved in cache")
            return value

    def invalidate(self):
        """Discards the cached value so the next `value` call reloads it."""
        with self._lock:
            self._value = None
            self._loaded = False

    def is_loaded(self):
        """Returns `True` if a value is cached and has not expired."""
        with self._lock:
            return not self._is_stale()

    def _is_stale(self):
        if not self._loaded:
            return True
        if self._is_expired_fn is None:
            return False
        return bool(self._is_expired_fn(self._value))
