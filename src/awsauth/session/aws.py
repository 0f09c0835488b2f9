#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Obtain boto3 sessions backed by the default credential chain.

## Overview

`CredsViaChain` is a `SessionProvider` that resolves credentials through
`awsauth.credentials.build_chain` and hands them out as boto3 Session objects.
The chain is built the first time it is needed and then reused, so the metadata
probe runs at most once per provider instance:

    # Instantiate a single session provider and reuse it
    session_provider = CredsViaChain(AuthConfig(region='us-east-1'))

    # Obtain a boto3 session and use it to interact with AWS
    ec2 = session_provider.session().resource('ec2')

    # Identify the account owning the credentials
    partition, account_id = session_provider.identify()

Explicit keys in the `AuthConfig` always win. Without them the environment,
the shared credentials file, the ECS container endpoint, and the EC2 instance
profile are tried in that order.

## Thread Safety

A `CredsViaChain` may be shared between threads. Per the boto3 documentation,
the sessions it returns should not be.
"""

import logging

import boto3
import botocore.exceptions

from awsauth.account import get_account_info
from awsauth.cache import CachedValue
from awsauth.config import AuthConfig, Environment
from awsauth.credentials import CredentialsError, build_chain
from awsauth.session import SessionProvider

LOG = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
"""Region used for identity API calls when none is configured."""


class CredsViaChain(SessionProvider):
    """A session provider that uses the default credential chain.

    `config` is the `awsauth.config.AuthConfig` holding explicit settings and
    `env` the `awsauth.config.Environment` snapshot, captured from the process
    when omitted. `http` is an optional `requests.Session` for the metadata
    probe and `log` the logger passed to every component.
    """

    def __init__(self, config=None, env=None, http=None, log=None):
        self._config = config or AuthConfig()
        self._env = env
        self._http = http
        self._log = log or LOG
        self._chain = CachedValue(self._build_chain)

    def chain(self):
        """Returns the `awsauth.credentials.ChainCredentials`, building it once."""
        return self._chain.value()

    def credentials(self):
        """Returns the `awsauth.credentials.Credentials` resolved by the chain."""
        return self.chain().get()

    def session(self, region=None):
        creds = self.credentials()
        try:
            return boto3.Session(
                aws_access_key_id=creds.access_key,
                aws_secret_access_key=creds.secret_key,
                aws_session_token=creds.session_token or None,
                region_name=region or self._config.region or None,
            )
        except botocore.exceptions.BotoCoreError as e:
            raise CredentialsError(f"Error creating AWS session: {e}") from e

    def identify(self):
        """Returns the `awsauth.account.AccountInfo` owning the credentials.

        Raises `awsauth.account.AccountInfoError` if the account cannot be
        determined.
        """
        session = self.session(region=self._config.region or DEFAULT_REGION)
        try:
            iam = session.client("iam")
            sts = session.client("sts")
        except botocore.exceptions.BotoCoreError as e:
            raise CredentialsError(f"Error creating AWS clients: {e}") from e

        return get_account_info(
            iam, sts, self.chain().provider_name, env=self._env, log=self._log
        )

    def _build_chain(self):
        self._env = self._env or Environment.from_environ()
        return build_chain(self._config, self._env, self._http, self._log)
