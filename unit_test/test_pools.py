# -*- coding: utf-8 -*-
"""
负载均衡池管理测试
"""

import pytest

from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.gateway.pools import PoolManager
from edgelb.gateway.virtual_services import VirtualServiceManager
from fake_gateway import FAST_RETRY, GATEWAY, SEG, FakeGatewayClient


class TestPoolManager:
    """测试负载均衡池"""

    def setup_method(self):
        """测试设置"""
        self.client = FakeGatewayClient()
        self.manager = PoolManager(self.client, GATEWAY)

    async def test_create_and_get(self):
        """测试创建后可按名称查询"""
        ref = await self.manager.create("pool-http", ["1.2.3.4", "1.2.3.5"], 31313)

        assert ref.name == "pool-http"
        assert await self.manager.get("pool-http") == ref

        summary = await self.manager.get_summary("pool-http")
        assert summary.ref == ref
        assert summary.member_count == 2

    async def test_create_is_idempotent(self):
        """测试重复创建不产生重复的池"""
        first = await self.manager.create("pool-http", ["1.2.3.4"], 31313)
        second = await self.manager.create("pool-http", ["1.2.3.4"], 31313)

        assert first == second
        assert len(self.client.pools) == 1

    async def test_create_existing_replaces_members(self):
        """测试同名池再次创建时按新成员列表替换"""
        first = await self.manager.create("pool-http", ["1.2.3.4", "1.2.3.5"], 31313)
        second = await self.manager.create("pool-http", ["5.5.5.5"], 8080)

        assert first == second
        assert len(self.client.pools) == 1
        pool = await self.manager.get_details("pool-http")
        assert pool.member_ips == ["5.5.5.5"]
        assert pool.member_port == 8080
        assert (await self.manager.get_summary("pool-http")).member_count == 1
        assert len(self.client.writes_of("update_pool")) == 1

    async def test_update_replaces_members(self):
        """测试更新整体替换成员列表"""
        await self.manager.create("pool-http", ["1.2.3.4", "1.2.3.5"], 31313)
        await self.manager.update("pool-http", ["5.5.5.5"], 8080)

        pool = await self.manager.get_details("pool-http")
        assert pool.member_ips == ["5.5.5.5"]
        assert pool.member_port == 8080
        assert (await self.manager.get_summary("pool-http")).member_count == 1

    async def test_update_identical_skips_write(self):
        """测试相同成员的更新不写入"""
        await self.manager.create("pool-http", ["1.2.3.4"], 31313)
        await self.manager.update("pool-http", ["1.2.3.4"], 31313)

        assert self.client.writes_of("update_pool") == []

    async def test_update_absent_is_not_found(self):
        """测试更新不存在的池"""
        with pytest.raises(GatewayError) as exc_info:
            await self.manager.update("pool-missing", ["1.2.3.4"], 80)
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    async def test_get_summary_absent(self):
        """测试不存在的池摘要"""
        assert await self.manager.get_summary("pool-missing") is None

    async def test_delete_absence_policy(self):
        """测试删除不存在的池"""
        await self.manager.delete("pool-missing", fail_if_absent=False)

        with pytest.raises(GatewayError) as exc_info:
            await self.manager.delete("pool-missing", fail_if_absent=True)
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    async def test_delete_pool_in_use_surfaces_backend_error(self):
        """测试删除仍被虚拟服务引用的池时后端错误原样抛出"""
        pool_ref = await self.manager.create("pool-http", ["1.2.3.4"], 31313)
        virtual_services = VirtualServiceManager(self.client, GATEWAY, FAST_RETRY)
        await virtual_services.create(
            "vs-http", pool_ref, SEG, "10.0.0.10", "10.0.0.10",
            "HTTP", 80, False, "", "",
        )

        with pytest.raises(GatewayError) as exc_info:
            await self.manager.delete("pool-http", fail_if_absent=True)
        assert exc_info.value.kind is ErrorKind.BACKEND
        assert "in use" in exc_info.value.message
        assert await self.manager.get("pool-http") is not None
