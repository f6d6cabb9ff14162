# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_session_auth

import pytest
from fakes import CLIENT_SECRET, FakeCognito, FakeIssuer, make_config
from pydantic import SecretStr

from coreason_session_auth.config import ClientConfig


@pytest.fixture
def public_config() -> ClientConfig:
    return make_config()


@pytest.fixture
def confidential_config() -> ClientConfig:
    return make_config(client_secret=SecretStr(CLIENT_SECRET))


@pytest.fixture
def cognito() -> FakeCognito:
    return FakeCognito()


@pytest.fixture
def issuer() -> FakeIssuer:
    return FakeIssuer()
