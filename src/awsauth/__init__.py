#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Resolve AWS credentials and identify the account that owns them.

## Overview

`awsauth` is both a small CLI and a library. It finds credentials by walking
an ordered chain of sources, then works out which AWS account and partition
those credentials belong to by trying several identity APIs until one answers.

### CLI Usage

    $ awsauth --log-level INFO
    aws 123456789012 EnvProvider

See `awsauth.cli` for the command line options and configuration file.

### Library Usage

The submodules of interest to library users are:

`awsauth.credentials`
: `awsauth.credentials.build_chain` assembles the default chain of credential
providers and returns an `awsauth.credentials.ChainCredentials`.

`awsauth.account`
: `awsauth.account.get_account_info` identifies the partition and account ID
for a pair of boto3 IAM and STS clients.

`awsauth.session`
: `awsauth.session.aws.CredsViaChain` ties both together and hands out boto3
sessions loaded with the resolved credentials.

`awsauth.metadata`
: A client for the EC2 instance metadata service with a short, configurable
timeout.

### Environment Variables

`AWS_METADATA_URL`
: Overrides the metadata service endpoint.

`AWS_METADATA_TIMEOUT`
: Duration string (e.g. `5s`) overriding the 100ms metadata request timeout.

`AWS_CONTAINER_CREDENTIALS_RELATIVE_URI`
: When set, ECS task role credentials are added to the chain.
"""

name = "awsauth"
__version__ = "1.0.0"
