#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Probe the EC2 instance metadata service.

## Overview

Code running on EC2 (or anything emulating it) can obtain role credentials and
identity information from a link-local HTTP service. Outside of EC2 there is
nothing listening on that address, so every request must fail quickly. This
module provides:

`MetadataClient`
:  A small client for the metadata service built on an isolated
`requests.Session`. It can test whether the service is reachable
(`MetadataClient.available`), return the instance profile
(`MetadataClient.iam_info`), and fetch role credentials.

`resolve_endpoint`
:  Returns the endpoint override from `AWS_METADATA_URL`, if any.

`metadata_timeout`
:  Returns the request timeout. The default is 100 milliseconds, which keeps
non-EC2 environments from stalling. It can be raised by setting
`AWS_METADATA_TIMEOUT` to a duration string such as `5s` or `500ms`.

Typical usage:

    client = MetadataClient.from_environment()
    if client.available():
        print(client.iam_info().instance_profile_arn)

Requests first obtain an IMDSv2 session token. If the token cannot be
obtained, the client falls back to plain IMDSv1 requests.
"""

import json
import logging
import re
from collections import namedtuple

import requests

from awsauth.config import Environment

LOG = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://169.254.169.254/latest"
"""Base URL of the instance metadata service when no override is set."""

DEFAULT_TIMEOUT = 0.1
"""Metadata request timeout in seconds."""

TIMEOUT_ENV_VAR = "AWS_METADATA_TIMEOUT"

TOKEN_TTL_SECONDS = 21600
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5 micro sign
    "μs": 1e-6,  # U+03BC greek mu
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

# Order matters: "ms" must be tried before "m" and "s".
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


IAMInfo = namedtuple("IAMInfo", ["instance_profile_arn", "instance_profile_id"])
IAMInfo.__doc__ = """Instance profile reported by the metadata service."""


def parse_duration(text):
    """Returns the number of seconds in a duration string.

    Durations are a sequence of decimal numbers, each with a unit suffix, and
    an optional leading sign, e.g. `300ms`, `-1.5h`, or `2h45m`. Valid units
    are `ns`, `us` (or `µs`), `ms`, `s`, `m`, and `h`. The bare string `0` is
    also accepted. A `ValueError` is raised for anything else.
    """
    original = text
    sign = 1.0
    if text and text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {original!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {original!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return sign * total


def format_duration(seconds):
    """Returns a positive number of seconds as a duration string.

    The result is in the form `parse_duration` accepts: `100ms` below one
    second, otherwise hours, minutes, and seconds such as `5s` or `1m30s`.
    """
    if seconds < 1:
        return f"{round(seconds * 1000, 6):g}ms"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    text = f"{round(secs, 9):g}s"
    if hours:
        return f"{int(hours)}h{int(minutes)}m{text}"
    if minutes:
        return f"{int(minutes)}m{text}"
    return text


def metadata_timeout(env, log=None):
    """Returns the metadata request timeout in seconds for `env`.

    Unparsable and non-positive values of `AWS_METADATA_TIMEOUT` are ignored
    with a warning and the default of 100 milliseconds is used.
    """
    log = log or LOG
    timeout = DEFAULT_TIMEOUT

    if env.metadata_timeout:
        try:
            user_timeout = parse_duration(env.metadata_timeout)
        except ValueError as e:
            log.warning("Error converting %s to a duration: %s", TIMEOUT_ENV_VAR, e)
        else:
            if user_timeout > 0:
                timeout = user_timeout
            else:
                log.warning(
                    "Non-positive value of %s (%s) is meaningless, ignoring",
                    TIMEOUT_ENV_VAR,
                    env.metadata_timeout,
                )

    log.info("Setting AWS metadata API timeout to %s", format_duration(timeout))
    return timeout


def resolve_endpoint(env, cfg=None, log=None):
    """Returns the metadata endpoint override, or `""` to use the default.

    When an override is present it is also stored under the `endpoint` key of
    the `cfg` dict, if one is given.
    """
    endpoint = env.metadata_url
    if not endpoint:
        return ""

    (log or LOG).info("Setting custom metadata endpoint: %r", endpoint)
    if cfg is not None:
        cfg["endpoint"] = endpoint
    return endpoint


def new_http_session():
    """Returns a `requests.Session` not shared with any other caller.

    Proxy and other settings from the environment are not applied, as the
    metadata service is always a direct link-local connection.
    """
    session = requests.Session()
    session.trust_env = False
    return session


class MetadataClient:
    """Client for the instance metadata service.

    `endpoint` is the base URL of the service (`DEFAULT_ENDPOINT` when empty)
    and `timeout` the per-request timeout in seconds. `http` is the
    `requests.Session` used for all requests; an isolated session is created
    when omitted. `log` is the logger used for diagnostics.
    """

    def __init__(self, endpoint="", timeout=DEFAULT_TIMEOUT, http=None, log=None):
        self.endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip("/")
        self.timeout = timeout
        self._http = http if http is not None else new_http_session()
        self._log = log or LOG
        self._token = None
        self._token_unsupported = False

    @classmethod
    def from_environment(cls, env=None, http=None, log=None):
        """Returns a client configured from `env` or the process environment."""
        env = env or Environment.from_environ()
        cfg = {"timeout": metadata_timeout(env, log)}
        resolve_endpoint(env, cfg, log)
        return cls(http=http, log=log, **cfg)

    def available(self):
        """Returns `True` if the metadata service answers with an instance ID.

        Something other than the metadata service may be listening on the same
        address, so a plain connection is not enough: the response must be a
        200 with a non-empty body.
        """
        try:
            instance_id = self.get_metadata("instance-id")
        except MetadataError as e:
            self._log.debug("metadata service not available: %s", e)
            return False
        return bool(instance_id.strip())

    def iam_info(self):
        """Returns the `IAMInfo` of the instance profile.

        Raises `MetadataError` if the service cannot be reached or the document
        is malformed.
        """
        data = self._get_json("iam/info")
        if data.get("Code") != "Success" or not data.get("InstanceProfileArn"):
            raise MetadataError(f"Invalid IAM info from metadata service: {data}")
        return IAMInfo(data["InstanceProfileArn"], data.get("InstanceProfileId", ""))

    def role_name(self):
        """Returns the name of the IAM role attached to the instance."""
        listing = self.get_metadata("iam/security-credentials/")
        names = [line.strip() for line in listing.splitlines() if line.strip()]
        if not names:
            raise MetadataError("No IAM role attached to the instance")
        return names[0]

    def role_credentials(self, role):
        """Returns the credentials document for `role` as a dict."""
        data = self._get_json(f"iam/security-credentials/{role}")
        if data.get("Code", "Success") != "Success":
            raise MetadataError(
                f"Failed to retrieve credentials for {role}: {data.get('Message', data)}"
            )
        return data

    def get_metadata(self, path):
        """Returns the body of `meta-data/<path>` as text."""
        url = f"{self.endpoint}/meta-data/{path}"
        headers = {}
        token = self._session_token()
        if token:
            headers[TOKEN_HEADER] = token

        try:
            resp = self._http.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise MetadataError(f"Unable to reach metadata service at {url}: {e}") from e

        if resp.status_code != 200:
            raise MetadataError(f"{resp.status_code} response from {url}")
        return resp.text

    def _get_json(self, path):
        text = self.get_metadata(path)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise MetadataError(f"Malformed response from meta-data/{path}") from e
        if not isinstance(data, dict):
            raise MetadataError(f"Malformed response from meta-data/{path}")
        return data

    def _session_token(self):
        if self._token or self._token_unsupported:
            return self._token

        url = f"{self.endpoint}/api/token"
        try:
            resp = self._http.put(
                url,
                headers={TOKEN_TTL_HEADER: str(TOKEN_TTL_SECONDS)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._log.debug("IMDSv2 token request failed, using IMDSv1: %s", e)
            self._token_unsupported = True
            return None

        if resp.status_code != 200 or not resp.text:
            self._log.debug("IMDSv2 token not issued (%s), using IMDSv1", resp.status_code)
            self._token_unsupported = True
            return None

        self._token = resp.text
        return self._token


class MetadataError(Exception):
    """Raised if the metadata service is unreachable or returns bad data."""
