#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Command line interface for awsauth.

## Synopsis

    $ awsauth [--config FILE] [--region REGION] [--log-level LEVEL]
    aws 123456789012 SharedCredentialsProvider

The output is the partition, the account ID, and the name of the credential
provider that supplied the credentials, separated by spaces.

## Options

`--config FILE`
:  Configuration file to load. Defaults to `~/.awsauth.yaml`, or the value of
the `AWSAUTH_CONFIG` environment variable when set. A missing file is the same
as an empty one.

`--region REGION`
:  Region used for the identity API calls.

`--log-level LEVEL`
:  One of `DEBUG`, `INFO`, `WARN`, or `ERROR`. The default is `ERROR`. `INFO`
shows which credential sources were added to the chain and which one was used.

## Configuration

The configuration file is YAML (`.yaml`/`.yml`) or JSON (`.json`):

    Credentials:
      access_key: STRING
      secret_key: STRING
      security_token: STRING
      profile: STRING
      shared_credentials_file: STRING
      region: STRING
    log_level: ("DEBUG" | "INFO" | "WARN" | "ERROR")

Command line flags override values from the file.
"""

import argparse
import logging
import os
import sys
import traceback
from pathlib import Path

from awsauth import __version__
from awsauth.config import AuthConfig, Choice, Config, Environment, Str
from awsauth.session.aws import CredsViaChain

LOG = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARN", "ERROR"]


# setup.py establishes this as the entry point for the awsauth CLI.
def main(argv=None):
    """The main entry point for the `awsauth` CLI tool installed with this package.

    Exits with a `0` status code upon success. Upon error, prints the error
    message to standard error and exits with `1`. A stack trace is only printed
    if the `AWSAUTH_TRACE` environment variable is set.
    """
    try:
        _cli(argv)

    except Exception as e:  # pylint: disable=broad-except
        if os.getenv("AWSAUTH_TRACE"):
            traceback.print_exc(file=sys.stderr)

        print(e, file=sys.stderr)
        sys.exit(1)


def default_config_filename():
    """Returns the path of the user configuration file."""
    return os.environ.get("AWSAUTH_CONFIG", str(Path.home() / ".awsauth.yaml"))


def _cli(argv=None, out=None):
    # The config file must be known before the other flags are parsed as it
    # provides their defaults.
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", metavar="FILE", default=default_config_filename())
    pre_args, _ = pre.parse_known_args(argv)

    config = Config.from_file(pre_args.config)
    auth_config = AuthConfig.from_config(config)

    parser = argparse.ArgumentParser(
        parents=[pre],
        description="Resolve AWS credentials and print the owning account.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--region",
        default=config.get("Credentials", "region", type=Str, default=""),
        help="region used for identity API calls",
    )
    parser.add_argument(
        "--log-level",
        default=config.get("log_level", type=Choice(*LOG_LEVELS), default="ERROR"),
        choices=LOG_LEVELS,
        help="set the logging level",
    )
    parser.add_argument(
        "--version", action="version", version="%(prog)s " + __version__
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(name)s %(levelname)s [%(threadName)s] %(message)s",
    )

    if args.region:
        auth_config.region = args.region

    LOG.info("loaded %r from %s", auth_config, args.config)
    provider = CredsViaChain(auth_config, Environment.from_environ())
    info = provider.identify()
    print(
        info.partition,
        info.account_id,
        provider.chain().provider_name,
        file=out or sys.stdout,
    )
