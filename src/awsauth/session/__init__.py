#
# Copyright 2019 FMR LLC <opensource@fidelity.com>
#
# SPDX-License-Identifier: MIT
#
"""Obtain sessions loaded with resolved credentials.

## Overview

This module provides a `SessionProvider` interface to obtain SDK sessions
carrying credentials resolved by `awsauth.credentials`. Regardless of where the
credentials came from, the session provider is responsible for returning a
ready to use session and for identifying the account that owns it.

`awsauth.session.aws`
:  Sessions are boto3 session objects that can be used to obtain boto3 clients
and resources.
"""


class SessionProvider:
    """A session provider is used to obtain credentialed sessions.

    This is an abstract base class and cannot be instantiated directly.
    """

    def session(self, region=None):
        """Returns a session loaded with the resolved credentials.

        `region` overrides the default region of the session, if any.
        """
        raise NotImplementedError

    def identify(self):
        """Returns the `awsauth.account.AccountInfo` owning the credentials."""
        raise NotImplementedError
