#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#

# pylint: disable=redefined-outer-name,missing-docstring

import json

import pytest
import requests

from awsauth.config import Environment

METADATA = "http://169.254.169.254/latest"


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text

    def json(self):
        return json.loads(self.text)


class FakeHTTP:
    """Stand-in for requests.Session that serves canned responses by URL.

    Requests to URLs without a route raise requests.ConnectionError, the same
    as a host with nothing listening.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def respond(self, method, url, status_code=200, text=""):
        self.routes[(method, url)] = FakeResponse(status_code, text)

    def respond_json(self, method, url, data, status_code=200):
        self.respond(method, url, status_code, json.dumps(data))

    def fail(self, method, url, exc=None):
        self.routes[(method, url)] = exc or requests.ConnectionError(f"refused: {url}")

    def urls(self, method=None):
        return [url for m, url, _ in self.calls if method is None or m == method]

    def _request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.routes.get((method, url))
        if result is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(result, Exception):
            raise result
        return result

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    def put(self, url, **kwargs):
        return self._request("PUT", url, **kwargs)


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def ec2_http(fake_http):
    """A fake metadata service for an instance with role 'app-role'."""
    fake_http.respond("PUT", f"{METADATA}/api/token", text="token-abc")
    fake_http.respond("GET", f"{METADATA}/meta-data/instance-id", text="i-0123456789")
    fake_http.respond_json(
        "GET",
        f"{METADATA}/meta-data/iam/info",
        {
            "Code": "Success",
            "InstanceProfileArn": "arn:aws:iam::123456789012:instance-profile/app",
            "InstanceProfileId": "AIPAEXAMPLE",
        },
    )
    fake_http.respond(
        "GET", f"{METADATA}/meta-data/iam/security-credentials/", text="app-role\n"
    )
    fake_http.respond_json(
        "GET",
        f"{METADATA}/meta-data/iam/security-credentials/app-role",
        {
            "Code": "Success",
            "AccessKeyId": "ASIAROLEEXAMPLE",
            "SecretAccessKey": "role-secret",
            "Token": "role-token",
            "Expiration": "2030-01-01T12:00:00Z",
        },
    )
    return fake_http


@pytest.fixture
def empty_env(tmp_path):
    # Point the shared credentials file somewhere empty so a developer's real
    # ~/.aws/credentials never leaks into tests.
    return Environment(shared_credentials_file=str(tmp_path / "no-credentials"))
