#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Identify the AWS account that owns a set of credentials.

## Overview

No single API reliably returns the account ID for every kind of credential.
Federated users cannot call `iam:GetUser`, some policies deny
`sts:GetCallerIdentity`, and instance profiles are best identified by the
metadata service. `get_account_info` therefore tries several strategies in
order and returns the `AccountInfo` of the first one that works:

1. If the credentials came from the instance metadata role provider, the
   instance profile ARN from the metadata service. Otherwise `iam:GetUser`.
2. `sts:GetCallerIdentity`.
3. `iam:ListRoles`, using the ARN of the first role.

Every failed attempt is remembered. If all of them fail, an `AccountInfoError`
is raised listing each failure. The only exception to falling through is an
unexpected error from `iam:GetUser`: `AccessDenied`, `ValidationError`, and
`InvalidClientTokenId` mean the credentials simply are not an IAM user, but any
other error is raised immediately.

    iam = session.client('iam')
    sts = session.client('sts')
    partition, account_id = get_account_info(iam, sts, chain.provider_name)

Each strategy returns a `StrategyResult` whose `outcome` tells the resolver to
stop with a result, move on to the next strategy, or fail outright.
"""

import enum
import logging
from collections import namedtuple
from functools import partial

import botocore.exceptions

from awsauth.credentials import InstanceMetadataProvider
from awsauth.metadata import MetadataClient, MetadataError

LOG = logging.getLogger(__name__)

# These errors from iam:GetUser are expected for federated and other non-IAM
# user credentials.
IGNORED_GET_USER_CODES = ("AccessDenied", "ValidationError", "InvalidClientTokenId")

_API_ERRORS = (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError)


AccountInfo = namedtuple("AccountInfo", ["partition", "account_id"])
AccountInfo.__doc__ = """The partition and account ID parsed from an ARN."""


class Outcome(enum.Enum):
    """What the resolver does after a strategy has run."""

    SUCCEED = "succeed"
    CONTINUE = "continue"
    FAIL = "fail"


class StrategyResult:
    """The result of a single account discovery attempt."""

    def __init__(self, outcome, account_info=None, error=None, message=None):
        self.outcome = outcome
        self.account_info = account_info
        self.error = error
        self.message = message

    @classmethod
    def succeed(cls, account_info):
        return cls(Outcome.SUCCEED, account_info=account_info)

    @classmethod
    def proceed(cls, error):
        return cls(Outcome.CONTINUE, error=error)

    @classmethod
    def fail(cls, error, message):
        return cls(Outcome.FAIL, error=error, message=message)


def parse_account_info_from_arn(arn):
    """Returns the `AccountInfo` encoded in `arn`.

    ARNs have the form `arn:partition:service:region:account-id:resource`. A
    `ValueError` is raised if `arn` has fewer than five colon separated parts.
    """
    parts = arn.split(":")
    if len(parts) < 5:
        raise ValueError(f"Unable to parse ID from invalid ARN: {arn!r}")
    return AccountInfo(parts[1], parts[4])


def get_account_info(iam, sts, auth_provider_name, metadata=None, env=None, log=None):
    """Returns the `AccountInfo` for the credentials used by `iam` and `sts`.

    `iam` and `sts` are boto3 clients created with the credentials being
    identified. `auth_provider_name` is the `NAME` of the credential provider
    that produced them, see `awsauth.credentials.ChainCredentials.provider_name`.
    When that is the instance metadata provider, `metadata` is the
    `awsauth.metadata.MetadataClient` to query; one is built from `env` if not
    given.

    Raises `AccountInfoError` if the account cannot be determined.
    """
    log = log or LOG

    if auth_provider_name == InstanceMetadataProvider.NAME:
        metadata = metadata or MetadataClient.from_environment(env, log=log)
        first = partial(_via_instance_metadata, metadata, log)
    else:
        first = partial(_via_get_user, iam, log)

    strategies = [
        first,
        partial(_via_caller_identity, sts, log),
        partial(_via_list_roles, iam, log),
    ]

    causes = []
    for strategy in strategies:
        result = strategy()
        if result.outcome is Outcome.SUCCEED:
            return result.account_info

        causes.append(result.error)
        if result.outcome is Outcome.FAIL:
            raise AccountInfoError(result.message, causes)

    raise AccountInfoError("Failed getting account ID via all available methods", causes)


def _from_arn(arn, log):
    try:
        return StrategyResult.succeed(parse_account_info_from_arn(arn))
    except ValueError as e:
        log.debug("%s", e)
        return StrategyResult.proceed(e)


def _via_instance_metadata(metadata, log):
    log.debug("Trying to get account ID via AWS Metadata API")
    try:
        info = metadata.iam_info()
    except MetadataError as e:
        # Metadata emulators may not serve iam/info. The remaining
        # strategies still run.
        log.debug("Failed to get account info from metadata service: %s", e)
        return StrategyResult.proceed(e)
    return _from_arn(info.instance_profile_arn, log)


def _via_get_user(iam, log):
    log.debug("Trying to get account ID via iam:GetUser")
    try:
        out = iam.get_user()
    except botocore.exceptions.ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code not in IGNORED_GET_USER_CODES:
            return StrategyResult.fail(e, "Failed getting account ID via 'iam:GetUser'")
        log.debug("Getting account ID via iam:GetUser failed: %s", e)
        return StrategyResult.proceed(e)
    except botocore.exceptions.BotoCoreError as e:
        return StrategyResult.fail(e, "Failed getting account ID via 'iam:GetUser'")
    return _from_arn(out.get("User", {}).get("Arn", ""), log)


def _via_caller_identity(sts, log):
    log.debug("Trying to get account ID via sts:GetCallerIdentity")
    try:
        out = sts.get_caller_identity()
    except _API_ERRORS as e:
        log.debug("Getting account ID via sts:GetCallerIdentity failed: %s", e)
        return StrategyResult.proceed(e)
    return _from_arn(out.get("Arn", ""), log)


def _via_list_roles(iam, log):
    log.debug("Trying to get account ID via iam:ListRoles")
    try:
        out = iam.list_roles(MaxItems=1)
    except _API_ERRORS as e:
        log.debug("Failed to get account ID via iam:ListRoles: %s", e)
        return StrategyResult.proceed(e)

    roles = out.get("Roles", [])
    if not roles:
        e = AccountInfoError(
            "Failed to get account ID via iam:ListRoles: No roles available"
        )
        log.debug("%s", e)
        return StrategyResult.proceed(e)
    return _from_arn(roles[0].get("Arn", ""), log)


class AccountInfoError(Exception):
    """Raised if the account cannot be determined.

    `causes` holds the error of every strategy that was attempted.
    """

    def __init__(self, message, causes=None):
        super().__init__(message)
        self.message = message
        self.causes = list(causes or [])

    def __str__(self):
        if not self.causes:
            return self.message
        details = "\n".join(f"  * {c}" for c in self.causes)
        return f"{self.message}. {len(self.causes)} error(s) occurred:\n{details}"
