#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#

# pylint: disable=redefined-outer-name,missing-docstring

import logging

import pytest
import requests

from awsauth import metadata
from awsauth.config import Environment

METADATA = "http://169.254.169.254/latest"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("5s", 5.0),
        ("300ms", 0.3),
        ("1m30s", 90.0),
        ("1.5h", 5400.0),
        ("2h45m", 9900.0),
        ("500us", 0.0005),
        ("1µs", 0.000001),
        ("10ns", 0.00000001),
        (".5s", 0.5),
        ("+2s", 2.0),
        ("-1s", -1.0),
        ("0", 0.0),
        ("0s", 0.0),
    ],
)
def test_parse_duration(text, expected):
    assert metadata.parse_duration(text) == pytest.approx(expected)


@pytest.mark.parametrize(
    "text", ["", "not-a-duration", "5", "s", "-", "5x", "1s2", "1 s", "1.s.s"]
)
def test_parse_duration_invalid(text):
    with pytest.raises(ValueError, match="invalid duration"):
        metadata.parse_duration(text)


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0.1, "100ms"),
        (0.25, "250ms"),
        (0.0005, "0.5ms"),
        (5, "5s"),
        (1.5, "1.5s"),
        (90, "1m30s"),
        (3600, "1h0m0s"),
    ],
)
def test_format_duration(seconds, expected):
    assert metadata.format_duration(seconds) == expected
    assert metadata.parse_duration(expected) == pytest.approx(seconds)


def test_metadata_timeout_logs_duration(caplog):
    with caplog.at_level(logging.INFO, logger="awsauth.metadata"):
        metadata.metadata_timeout(Environment())
        metadata.metadata_timeout(Environment(metadata_timeout="1m30s"))
    assert "Setting AWS metadata API timeout to 100ms" in caplog.text
    assert "Setting AWS metadata API timeout to 1m30s" in caplog.text


@pytest.mark.parametrize(
    "value, expected",
    [("5s", 5.0), ("250ms", 0.25), ("", 0.1)],
)
def test_metadata_timeout(value, expected):
    env = Environment(metadata_timeout=value)
    assert metadata.metadata_timeout(env) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["-1s", "0", "not-a-duration"])
def test_metadata_timeout_ignores_bad_values(caplog, value):
    env = Environment(metadata_timeout=value)
    with caplog.at_level(logging.WARNING, logger="awsauth.metadata"):
        assert metadata.metadata_timeout(env) == metadata.DEFAULT_TIMEOUT
    assert "AWS_METADATA_TIMEOUT" in caplog.text


def test_metadata_timeout_uses_injected_logger(mocker):
    log = mocker.MagicMock(spec=logging.Logger)
    metadata.metadata_timeout(Environment(metadata_timeout="-1s"), log)
    log.warning.assert_called_once()
    log.info.assert_called_once()


def test_resolve_endpoint_override():
    cfg = {}
    env = Environment(metadata_url="http://127.0.0.1:1338/latest")
    assert metadata.resolve_endpoint(env, cfg) == "http://127.0.0.1:1338/latest"
    assert cfg == {"endpoint": "http://127.0.0.1:1338/latest"}


def test_resolve_endpoint_default():
    cfg = {}
    assert metadata.resolve_endpoint(Environment(), cfg) == ""
    assert cfg == {}


def test_new_http_session_is_isolated():
    s1 = metadata.new_http_session()
    s2 = metadata.new_http_session()
    assert isinstance(s1, requests.Session)
    assert s1 is not s2
    assert s1.trust_env is False


def test_available_with_token(ec2_http):
    client = metadata.MetadataClient(http=ec2_http, timeout=0.5)
    assert client.available()

    method, url, kwargs = ec2_http.calls[-1]
    assert (method, url) == ("GET", f"{METADATA}/meta-data/instance-id")
    assert kwargs["headers"] == {metadata.TOKEN_HEADER: "token-abc"}
    assert kwargs["timeout"] == 0.5


def test_available_falls_back_to_imdsv1(fake_http):
    fake_http.fail("PUT", f"{METADATA}/api/token")
    fake_http.respond("GET", f"{METADATA}/meta-data/instance-id", text="i-1")
    client = metadata.MetadataClient(http=fake_http)

    assert client.available()
    assert fake_http.calls[-1][2]["headers"] == {}


def test_available_falls_back_when_token_refused(fake_http):
    fake_http.respond("PUT", f"{METADATA}/api/token", status_code=403)
    fake_http.respond("GET", f"{METADATA}/meta-data/instance-id", text="i-1")
    client = metadata.MetadataClient(http=fake_http)

    assert client.available()
    assert fake_http.calls[-1][2]["headers"] == {}


def test_token_is_requested_once(ec2_http):
    client = metadata.MetadataClient(http=ec2_http)
    client.available()
    client.iam_info()
    assert ec2_http.urls("PUT") == [f"{METADATA}/api/token"]


def test_not_available_when_unreachable(fake_http):
    client = metadata.MetadataClient(http=fake_http)
    assert not client.available()


def test_not_available_on_timeout(fake_http):
    fake_http.fail("GET", f"{METADATA}/meta-data/instance-id", requests.Timeout("slow"))
    assert not metadata.MetadataClient(http=fake_http).available()


@pytest.mark.parametrize("status, body", [(404, "Not Found"), (200, ""), (200, "  \n")])
def test_not_available_without_instance_id(fake_http, status, body):
    fake_http.respond("GET", f"{METADATA}/meta-data/instance-id", status, body)
    assert not metadata.MetadataClient(http=fake_http).available()


def test_custom_endpoint(fake_http):
    fake_http.respond("GET", "http://localhost:8111/meta-data/instance-id", text="i-9")
    client = metadata.MetadataClient("http://localhost:8111/", http=fake_http)
    assert client.endpoint == "http://localhost:8111"
    assert client.available()


def test_from_environment(fake_http):
    env = Environment(metadata_url="http://localhost:8111", metadata_timeout="2s")
    client = metadata.MetadataClient.from_environment(env, http=fake_http)
    assert client.endpoint == "http://localhost:8111"
    assert client.timeout == pytest.approx(2.0)


def test_iam_info(ec2_http):
    info = metadata.MetadataClient(http=ec2_http).iam_info()
    assert info.instance_profile_arn == "arn:aws:iam::123456789012:instance-profile/app"
    assert info.instance_profile_id == "AIPAEXAMPLE"


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        "[]",
        '{"Code": "Failure", "InstanceProfileArn": "arn:aws:iam::1:x"}',
        '{"Code": "Success"}',
    ],
)
def test_iam_info_malformed(fake_http, body):
    fake_http.respond("GET", f"{METADATA}/meta-data/iam/info", text=body)
    with pytest.raises(metadata.MetadataError):
        metadata.MetadataClient(http=fake_http).iam_info()


def test_iam_info_unreachable(fake_http):
    with pytest.raises(metadata.MetadataError, match="Unable to reach"):
        metadata.MetadataClient(http=fake_http).iam_info()


def test_role_name_and_credentials(ec2_http):
    client = metadata.MetadataClient(http=ec2_http)
    assert client.role_name() == "app-role"
    assert client.role_credentials("app-role")["AccessKeyId"] == "ASIAROLEEXAMPLE"


def test_role_name_without_role(fake_http):
    fake_http.respond("GET", f"{METADATA}/meta-data/iam/security-credentials/", text="")
    with pytest.raises(metadata.MetadataError, match="No IAM role"):
        metadata.MetadataClient(http=fake_http).role_name()


def test_role_credentials_failure_code(fake_http):
    fake_http.respond_json(
        "GET",
        f"{METADATA}/meta-data/iam/security-credentials/app-role",
        {"Code": "AssumeRoleUnauthorizedAccess", "Message": "denied"},
    )
    with pytest.raises(metadata.MetadataError, match="denied"):
        metadata.MetadataClient(http=fake_http).role_credentials("app-role")
