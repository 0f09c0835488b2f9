#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Resolve AWS credentials from an ordered chain of sources.

## Overview

A `CredentialProvider` knows how to produce `Credentials` from exactly one
source. The following providers are included in this module:

`StaticProvider`
:  Credentials given explicitly, typically from an `awsauth.config.AuthConfig`.

`EnvProvider`
:  Credentials from the `AWS_ACCESS_KEY_ID`, `AWS_SECRET_ACCESS_KEY`, and
`AWS_SESSION_TOKEN` environment variables.

`SharedCredentialsProvider`
:  Credentials from a profile in the shared credentials file
(~/.aws/credentials by default).

`ContainerProvider`
:  Task role credentials served to ECS containers.

`InstanceMetadataProvider`
:  Instance profile role credentials from the EC2 metadata service.

`ChainCredentials` wraps an ordered list of providers. No provider is consulted
until credentials are requested. Providers are then tried in order and the
first one that produces credentials wins. Its credentials are cached until that
provider reports them as expired or `ChainCredentials.expire` is called.

## Building the Default Chain

`build_chain` assembles the standard chain:

    chain = build_chain(AuthConfig(region='us-east-1'))
    creds = chain.get()
    print(chain.provider_name)

Static credentials always come first so explicit configuration wins over the
environment. The container provider is added only when
`AWS_CONTAINER_CREDENTIALS_RELATIVE_URI` is set, and the instance metadata
provider only when the metadata service answers a probe. The probe is the only
network call made while building the chain.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import requests
from botocore.configloader import raw_config_parse
from botocore.exceptions import BotoCoreError
from botocore.utils import parse_timestamp

from awsauth.cache import CachedValue
from awsauth.config import AuthConfig, Environment
from awsauth.metadata import (
    MetadataClient,
    MetadataError,
    metadata_timeout,
    new_http_session,
    resolve_endpoint,
)

LOG = logging.getLogger(__name__)

CONTAINER_CREDENTIALS_HOST = "http://169.254.170.2"

EXPIRY_WINDOW = timedelta(seconds=60)
"""Temporary credentials are treated as expired this long before they are."""


class Credentials:
    """An immutable set of AWS credentials.

    `provider_name` is the `NAME` of the provider that produced them.
    `expiration` is a timezone-aware datetime for temporary credentials, or
    `None` if they do not expire.
    """

    __slots__ = (
        "access_key",
        "secret_key",
        "session_token",
        "provider_name",
        "expiration",
    )

    def __init__(
        self, access_key, secret_key, session_token="", provider_name="", expiration=None
    ):
        object.__setattr__(self, "access_key", access_key or "")
        object.__setattr__(self, "secret_key", secret_key or "")
        object.__setattr__(self, "session_token", session_token or "")
        object.__setattr__(self, "provider_name", provider_name)
        object.__setattr__(self, "expiration", expiration)

    def __setattr__(self, name, value):
        raise AttributeError("Credentials are immutable")

    def __eq__(self, other):
        if not isinstance(other, Credentials):
            return NotImplemented
        return all(getattr(self, a) == getattr(other, a) for a in self.__slots__)

    def __hash__(self):
        return hash(tuple(getattr(self, a) for a in self.__slots__))

    def __repr__(self):
        return (
            f"Credentials(access_key={self.access_key!r}, secret_key='***', "
            f"provider_name={self.provider_name!r}, expiration={self.expiration})"
        )

    def has_keys(self):
        """Returns `True` if both the access key and the secret key are set."""
        return bool(self.access_key and self.secret_key)

    def is_expired(self, now=None):
        """Returns `True` if these are temporary credentials about to expire."""
        if self.expiration is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expiration - EXPIRY_WINDOW


class CredentialProvider:
    """A source of AWS credentials.

    This is an abstract base class and cannot be instantiated directly.
    Subclasses set `NAME` and implement `retrieve`.
    """

    NAME = None

    def __init__(self):
        self._credentials = None

    def retrieve(self):
        """Returns `Credentials` from this source.

        Raises `CredentialsError` if this source cannot provide credentials.
        """
        creds = self._retrieve()
        self._credentials = creds
        return creds

    def is_expired(self):
        """Returns `True` if the last retrieved credentials must be refreshed."""
        return self._credentials is None or self._credentials.is_expired()

    def _retrieve(self):
        raise NotImplementedError


class StaticProvider(CredentialProvider):
    """Provides credentials given explicitly to the constructor."""

    NAME = "StaticProvider"

    def __init__(self, access_key="", secret_key="", session_token=""):
        super().__init__()
        self._access_key = access_key
        self._secret_key = secret_key
        self._session_token = session_token

    @classmethod
    def from_config(cls, config):
        """Returns a provider for the static keys of an `AuthConfig`."""
        return cls(config.access_key, config.secret_key, config.security_token)

    def _retrieve(self):
        if not self._access_key or not self._secret_key:
            raise CredentialsError("static credentials are empty")
        return Credentials(
            self._access_key, self._secret_key, self._session_token, self.NAME
        )


class EnvProvider(CredentialProvider):
    """Provides credentials from an `awsauth.config.Environment` snapshot."""

    NAME = "EnvProvider"

    def __init__(self, env):
        super().__init__()
        self._env = env

    def _retrieve(self):
        if not self._env.access_key:
            raise CredentialsError(
                "AWS_ACCESS_KEY_ID or AWS_ACCESS_KEY not found in environment"
            )
        if not self._env.secret_key:
            raise CredentialsError(
                "AWS_SECRET_ACCESS_KEY or AWS_SECRET_KEY not found in environment"
            )
        return Credentials(
            self._env.access_key, self._env.secret_key, self._env.session_token, self.NAME
        )


class SharedCredentialsProvider(CredentialProvider):
    """Provides credentials from a profile in the shared credentials file.

    When `filename` is empty, `AWS_SHARED_CREDENTIALS_FILE` from `env` is used,
    and failing that ~/.aws/credentials. When `profile` is empty, `AWS_PROFILE`
    is used, and failing that the "default" profile.
    """

    NAME = "SharedCredentialsProvider"

    def __init__(self, filename="", profile="", env=None):
        super().__init__()
        env = env or Environment()
        self.filename = Path(
            filename
            or env.shared_credentials_file
            or Path.home() / ".aws" / "credentials"
        ).expanduser()
        self.profile = profile or env.profile or "default"

    def _retrieve(self):
        if not self.filename.is_file():
            raise CredentialsError(f"shared credentials file not found: {self.filename}")

        try:
            available = raw_config_parse(str(self.filename), parse_subsections=False)
        except (BotoCoreError, UnicodeDecodeError, OSError) as e:
            raise CredentialsError(
                f"failed to parse shared credentials file {self.filename}: {e}"
            ) from e

        if self.profile not in available:
            raise CredentialsError(
                f"profile {self.profile} not found in {self.filename}"
            )

        section = available[self.profile]
        access_key = section.get("aws_access_key_id", "").strip()
        secret_key = section.get("aws_secret_access_key", "").strip()
        if not access_key or not secret_key:
            raise CredentialsError(
                f"profile {self.profile} in {self.filename} is missing keys"
            )

        return Credentials(
            access_key,
            secret_key,
            section.get("aws_session_token", "").strip(),
            self.NAME,
        )


class ContainerProvider(CredentialProvider):
    """Provides task role credentials from the ECS container endpoint.

    `relative_uri` is the value of `AWS_CONTAINER_CREDENTIALS_RELATIVE_URI`.
    Requests use the `http` session and `timeout` given.
    """

    NAME = "ContainerProvider"

    def __init__(
        self, relative_uri, http=None, timeout=None, host=CONTAINER_CREDENTIALS_HOST
    ):
        super().__init__()
        self.url = host.rstrip("/") + "/" + relative_uri.lstrip("/")
        self._http = http if http is not None else new_http_session()
        self._timeout = timeout

    def _retrieve(self):
        try:
            resp = self._http.get(
                self.url, headers={"Accept": "application/json"}, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise CredentialsError(f"container credentials request failed: {e}") from e

        if resp.status_code != 200:
            raise CredentialsError(f"{resp.status_code} response from {self.url}")

        try:
            data = resp.json()
        except ValueError as e:
            raise CredentialsError(f"malformed container credentials from {self.url}") from e

        return _temporary_credentials(data, self.NAME)


class InstanceMetadataProvider(CredentialProvider):
    """Provides instance profile role credentials via a `MetadataClient`."""

    NAME = "EC2RoleProvider"

    def __init__(self, client):
        super().__init__()
        self.client = client

    def _retrieve(self):
        try:
            role = self.client.role_name()
            data = self.client.role_credentials(role)
        except MetadataError as e:
            raise CredentialsError(f"instance role credentials unavailable: {e}") from e
        return _temporary_credentials(data, self.NAME)


def _temporary_credentials(data, provider_name):
    if not isinstance(data, dict):
        raise CredentialsError(f"malformed credentials document for {provider_name}")

    access_key = data.get("AccessKeyId")
    secret_key = data.get("SecretAccessKey")
    if not access_key or not secret_key:
        raise CredentialsError(f"credentials document for {provider_name} is missing keys")

    expiration = data.get("Expiration")
    if expiration:
        try:
            expiration = parse_timestamp(expiration)
        except (TypeError, ValueError, RuntimeError) as e:
            raise CredentialsError(f"invalid expiration {expiration!r}") from e
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)

    return Credentials(
        access_key, secret_key, data.get("Token", ""), provider_name, expiration or None
    )


class ChainCredentials:
    """Lazily resolves credentials from the first provider that succeeds.

    `providers` is an ordered list of `CredentialProvider` objects. Nothing is
    retrieved until `get` is called. This class is thread-safe.
    """

    def __init__(self, providers, log=None):
        self.providers = list(providers)
        self._log = log or LOG
        self._current = None
        self._cache = CachedValue(self._resolve, lambda _: self._current_expired())

    def get(self):
        """Returns the `Credentials` of the first provider that produces them.

        Cached credentials are returned until their provider reports them as
        expired. Raises `CredentialsError` if no provider succeeds.
        """
        return self._cache.value()

    def expire(self):
        """Forces the next `get` to walk the chain again."""
        self._cache.invalidate()

    def is_expired(self):
        """Returns `True` if the next `get` will walk the chain."""
        return not self._cache.is_loaded()

    @property
    def provider_name(self):
        """The `NAME` of the provider that produced the current credentials."""
        return self._current.NAME if self._current is not None else None

    def _current_expired(self):
        return self._current is None or self._current.is_expired()

    def _resolve(self):
        errors = []
        for provider in self.providers:
            try:
                creds = provider.retrieve()
            except (CredentialsError, requests.RequestException) as e:
                self._log.debug("%s did not provide credentials: %s", provider.NAME, e)
                errors.append(f"{provider.NAME}: {e}")
                continue

            if not creds.has_keys():
                errors.append(f"{provider.NAME}: returned empty credentials")
                continue

            self._log.info("using credentials from %s", provider.NAME)
            self._current = provider
            return creds

        self._current = None
        raise CredentialsError(
            "no valid credential source found in chain: " + "; ".join(errors)
        )


def build_chain(config=None, env=None, http=None, log=None):
    """Returns a `ChainCredentials` for `config` and the environment.

    `config` is an `awsauth.config.AuthConfig` and `env` an
    `awsauth.config.Environment`; the process environment is captured when it
    is omitted. `http` is the `requests.Session` used to probe the metadata
    service and to reach the container endpoint. A new isolated session is
    created when it is not given, so timeouts set here never affect other
    HTTP clients in the process.
    """
    log = log or LOG
    config = config or AuthConfig()
    env = env or Environment.from_environ()

    providers = [
        StaticProvider.from_config(config),
        EnvProvider(env),
        SharedCredentialsProvider(config.shared_credentials_file, config.profile, env),
    ]

    http = http if http is not None else new_http_session()
    client_cfg = {"timeout": metadata_timeout(env, log)}
    used_endpoint = resolve_endpoint(env, client_cfg, log)

    if env.container_relative_uri:
        providers.append(
            ContainerProvider(env.container_relative_uri, http, client_cfg["timeout"])
        )
        log.info(
            "ECS container credentials detected, %s added to auth chain",
            ContainerProvider.NAME,
        )

    metadata = MetadataClient(http=http, log=log, **client_cfg)
    if metadata.available():
        providers.append(InstanceMetadataProvider(metadata))
        log.info(
            "AWS EC2 instance detected via metadata API endpoint, %s added to auth chain",
            InstanceMetadataProvider.NAME,
        )
    else:
        log.info(
            "Ignoring AWS metadata API endpoint at %s as it doesn't return any instance-id",
            used_endpoint or "default location",
        )

    return ChainCredentials(providers, log)


class CredentialsError(Exception):
    """Raised if credentials cannot be obtained."""
