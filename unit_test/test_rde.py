# -*- coding: utf-8 -*-
"""
共享记录测试
"""

import pytest

from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.gateway.rde import RdeManager, extract_virtual_ips, with_virtual_ips
from fake_gateway import CLUSTER_ID, FakeGatewayClient


class TestRdeDocument:
    """测试记录文档读写辅助函数"""

    def test_extract_missing_path(self):
        """测试缺少路径时返回空列表"""
        assert extract_virtual_ips({}) == []
        assert extract_virtual_ips({"entity": {"status": None}}) == []

    def test_with_virtual_ips_keeps_other_fields(self):
        """测试替换虚拟IP列表时保留其他字段且不修改原文档"""
        document = {"entity": {"status": {"phase": "ready"}, "spec": {"a": 1}}}
        updated = with_virtual_ips(document, ["10.0.0.10"])

        assert updated["entity"]["status"] == {
            "phase": "ready",
            "virtual_IPs": ["10.0.0.10"],
        }
        assert updated["entity"]["spec"] == {"a": 1}
        assert "virtual_IPs" not in document["entity"]["status"]


class TestRdeManager:
    """测试共享记录的乐观并发控制"""

    def setup_method(self):
        """测试设置"""
        self.client = FakeGatewayClient()
        self.client.add_entity(CLUSTER_ID, ["10.0.0.10"])
        self.rde = RdeManager(self.client, CLUSTER_ID, max_retries=3)

    async def test_consecutive_reads_return_equal_tokens(self):
        """测试无写入时两次读取的版本标记相同"""
        first = await self.rde.get_virtual_ips()
        second = await self.rde.get_virtual_ips()

        assert first.etag == second.etag
        assert first.virtual_ips == ["10.0.0.10"]

    async def test_update_with_current_token(self):
        """测试使用当前版本标记写入成功"""
        snapshot = await self.rde.get_virtual_ips()
        status = await self.rde.update_virtual_ips(
            ["10.0.0.10", "10.0.0.11"], snapshot.etag, snapshot.document
        )

        assert status == 200
        after = await self.rde.get_virtual_ips()
        assert after.virtual_ips == ["10.0.0.10", "10.0.0.11"]
        assert after.etag != snapshot.etag

    async def test_update_with_stale_token(self):
        """测试使用过期版本标记写入失败且记录不变"""
        stale = await self.rde.get_virtual_ips()
        await self.rde.update_virtual_ips(["10.0.0.12"], stale.etag, stale.document)

        with pytest.raises(GatewayError) as exc_info:
            await self.rde.update_virtual_ips(["10.0.0.99"], stale.etag, stale.document)

        assert exc_info.value.kind is ErrorKind.PRECONDITION_FAILED
        assert exc_info.value.status_code == 412
        assert self.client.virtual_ips() == ["10.0.0.12"]

    async def test_add_retries_after_conflict(self):
        """测试并发写入冲突后重新读取并保留对方的修改"""
        self.client.concurrent_writers = ["10.0.0.20"]
        await self.rde.add_virtual_ip("10.0.0.11")

        assert self.client.virtual_ips() == ["10.0.0.10", "10.0.0.20", "10.0.0.11"]

    async def test_add_existing_does_not_write(self):
        """测试添加已存在的IP不写入"""
        await self.rde.add_virtual_ip("10.0.0.10")
        assert self.client.writes_of("put_entity") == []

    async def test_remove_absent_does_not_write(self):
        """测试移除不存在的IP不写入"""
        await self.rde.remove_virtual_ip("10.0.0.99")
        assert self.client.writes_of("put_entity") == []

    async def test_remove(self):
        """测试移除IP"""
        await self.rde.remove_virtual_ip("10.0.0.10")
        assert self.client.virtual_ips() == []

    async def test_conflict_retries_exhausted(self):
        """测试持续冲突时放弃并抛出 PRECONDITION_FAILED"""
        self.client.concurrent_writers = ["10.0.0.21", "10.0.0.22", "10.0.0.23"]

        with pytest.raises(GatewayError) as exc_info:
            await self.rde.add_virtual_ip("10.0.0.11")

        assert exc_info.value.kind is ErrorKind.PRECONDITION_FAILED
        assert exc_info.value.status_code == 412
        assert "10.0.0.11" not in self.client.virtual_ips()

    async def test_missing_entity(self):
        """测试记录不存在"""
        rde = RdeManager(self.client, "urn:cluster:missing")
        with pytest.raises(GatewayError) as exc_info:
            await rde.get_virtual_ips()
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
