# -*- coding: utf-8 -*-
"""
公共测试夹具
"""

import pytest

from edgelb.gateway.manager import GatewayManager
from fake_gateway import FAST_RETRY, NETWORK, FakeGatewayClient


@pytest.fixture
def fake_client():
    return FakeGatewayClient()


@pytest.fixture
async def gateway_manager(fake_client):
    return await GatewayManager.create(
        fake_client, NETWORK, "", retry_policy=FAST_RETRY
    )
