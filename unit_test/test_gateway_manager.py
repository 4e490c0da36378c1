# -*- coding: utf-8 -*-
"""
网关管理器测试
覆盖组合负载均衡的完整生命周期
"""

import pytest

from edgelb.core.cancellation import CancelToken
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.gateway.manager import GatewayManager
from edgelb.models import OneArm, PortDetails
from fake_gateway import CLUSTER_ID, FAST_RETRY, NETWORK, FakeGatewayClient

PORTS = [
    PortDetails(port_suffix="http", external_port=80, internal_port=31313),
    PortDetails(port_suffix="https", external_port=443, internal_port=31314),
]
SSL_PORTS = [
    PortDetails(port_suffix="http", external_port=80, internal_port=31313),
    PortDetails(
        port_suffix="https",
        external_port=443,
        internal_port=31314,
        protocol="HTTPS",
        use_ssl=True,
        cert_alias="cluster-cert",
    ),
]
MEMBERS = ["1.2.3.4", "1.2.3.5"]


class TestGatewayCaching:
    """测试网关信息缓存"""

    async def test_unknown_network_is_fatal(self):
        """测试网络不存在时为 FATAL_CONFIG"""
        with pytest.raises(GatewayError) as exc_info:
            await GatewayManager.create(FakeGatewayClient(), "no-such-network")
        assert exc_info.value.kind is ErrorKind.FATAL_CONFIG

    async def test_use_before_cache_is_fatal(self):
        """测试缓存前使用管理器为 FATAL_CONFIG"""
        manager = GatewayManager(FakeGatewayClient(), NETWORK)
        with pytest.raises(GatewayError) as exc_info:
            await manager.get_load_balancer("vs-http")
        assert exc_info.value.kind is ErrorKind.FATAL_CONFIG

    async def test_cache_is_resolved_once(self):
        """测试网关只解析一次"""
        client = FakeGatewayClient()
        manager = await GatewayManager.create(client, NETWORK)
        client.networks.clear()

        ref = await manager.cache_gateway_details()
        assert ref.name == "edge-gw"

    async def test_missing_seg_is_fatal(self):
        """测试网关未分配服务引擎组"""
        client = FakeGatewayClient(seg_assignments=[])
        manager = await GatewayManager.create(client, NETWORK, retry_policy=FAST_RETRY)

        with pytest.raises(GatewayError) as exc_info:
            await manager.create_load_balancer(
                "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
            )
        assert exc_info.value.kind is ErrorKind.FATAL_CONFIG


class TestLoadBalancerLifecycle:
    """测试双臂拓扑的负载均衡生命周期"""

    async def test_lifecycle(self, gateway_manager, fake_client):
        """测试创建、查询、更新、删除的完整流程，含HTTPS端口"""
        fake_client.add_certificate("cluster-cert")
        external_ip = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, SSL_PORTS, None, CLUSTER_ID
        )
        assert external_ip == "10.0.0.10"

        https_service = await gateway_manager.virtual_services.get_details("vs-https")
        assert https_service.protocol == "HTTPS"
        assert https_service.use_ssl is True
        assert https_service.certificate_ref.name == "cluster-cert"
        assert https_service.port == 443
        http_service = await gateway_manager.virtual_services.get_details("vs-http")
        assert http_service.certificate_ref is None
        assert await gateway_manager.get_load_balancer("vs-http") == external_ip
        assert await gateway_manager.get_load_balancer("vs-https") == external_ip
        assert await gateway_manager.get_virtual_ips(CLUSTER_ID) == [external_ip]

        summary = await gateway_manager.pools.get_summary("pool-http")
        assert summary.member_count == 2

        await gateway_manager.update_load_balancer(
            "pool-http", "vs-http", ["5.5.5.5"], 8080, 8081
        )
        pool = await gateway_manager.pools.get_details("pool-http")
        assert pool.member_ips == ["5.5.5.5"]
        assert pool.member_port == 8080
        virtual_service = await gateway_manager.virtual_services.get_details("vs-http")
        assert virtual_service.port == 8081

        await gateway_manager.delete_load_balancer(
            "vs", "pool", SSL_PORTS, None, CLUSTER_ID
        )
        assert await gateway_manager.get_load_balancer("vs-http") == ""
        assert await gateway_manager.pools.get("pool-http") is None
        assert await gateway_manager.get_virtual_ips(CLUSTER_ID) == []
        assert fake_client.virtual_services == {}
        assert fake_client.pools == {}

    async def test_create_is_idempotent(self, gateway_manager, fake_client):
        """测试重复创建返回相同地址且无重复资源"""
        first = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
        )
        second = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
        )

        assert first == second
        assert len(fake_client.virtual_services) == 2
        assert len(fake_client.pools) == 2
        assert fake_client.virtual_ips() == [first]

    async def test_create_resumes_after_partial_failure(self, gateway_manager, fake_client):
        """测试部分端口创建后重试可继续并复用外部地址"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )
        external_ip = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
        )

        assert external_ip == "10.0.0.10"
        virtual_ips = {vs.virtual_ip for vs in fake_client.virtual_services.values()}
        assert virtual_ips == {"10.0.0.10"}

    async def test_separate_load_balancers_get_distinct_addresses(self, gateway_manager):
        """测试不同负载均衡分配不同地址"""
        first = await gateway_manager.create_load_balancer(
            "a", "pool-a", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )
        second = await gateway_manager.create_load_balancer(
            "b", "pool-b", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )

        assert first != second
        assert await gateway_manager.get_virtual_ips(CLUSTER_ID) == [first, second]

    async def test_empty_ports_is_invalid(self, gateway_manager):
        """测试端口列表为空"""
        with pytest.raises(GatewayError) as exc_info:
            await gateway_manager.create_load_balancer(
                "vs", "pool", MEMBERS, [], None, CLUSTER_ID
            )
        assert exc_info.value.kind is ErrorKind.INVALID_ARGUMENT

    async def test_existing_vs_bound_to_other_pool(self, gateway_manager):
        """测试已存在的虚拟服务绑定到其他池"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )
        with pytest.raises(GatewayError) as exc_info:
            await gateway_manager.create_load_balancer(
                "vs", "other-pool", MEMBERS, PORTS[:1], None, CLUSTER_ID
            )
        assert exc_info.value.kind is ErrorKind.INVALID_ARGUMENT

    async def test_invalid_vip_subnet(self, fake_client):
        """测试配置的网段格式错误"""
        manager = await GatewayManager.create(
            fake_client, NETWORK, "1.1.1.1/24", retry_policy=FAST_RETRY
        )
        with pytest.raises(GatewayError) as exc_info:
            await manager.create_load_balancer(
                "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
            )
        assert exc_info.value.kind is ErrorKind.INVALID_SUBNET

    async def test_delete_twice_is_noop(self, gateway_manager, fake_client):
        """测试重复删除"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
        )
        await gateway_manager.delete_load_balancer("vs", "pool", PORTS, None, CLUSTER_ID)
        writes = len(fake_client.writes)

        await gateway_manager.delete_load_balancer("vs", "pool", PORTS, None, CLUSTER_ID)
        assert len(fake_client.writes) == writes

    async def test_delete_retry_after_record_write_failure(
        self, gateway_manager, fake_client, monkeypatch
    ):
        """测试共享记录写入失败后重试删除仍能移除外部地址"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )
        assert fake_client.virtual_ips() == ["10.0.0.10"]

        put_entity = fake_client.put_entity

        async def failing_put_entity(*args, **kwargs):
            raise GatewayError(ErrorKind.BACKEND, "entity write failed", status_code=500)

        monkeypatch.setattr(fake_client, "put_entity", failing_put_entity)
        with pytest.raises(GatewayError) as exc_info:
            await gateway_manager.delete_load_balancer(
                "vs", "pool", PORTS[:1], None, CLUSTER_ID
            )
        assert exc_info.value.kind is ErrorKind.BACKEND
        assert fake_client.virtual_ips() == ["10.0.0.10"]

        monkeypatch.setattr(fake_client, "put_entity", put_entity)
        await gateway_manager.delete_load_balancer(
            "vs", "pool", PORTS[:1], None, CLUSTER_ID
        )

        assert "10.0.0.10" not in fake_client.virtual_ips()
        assert fake_client.virtual_services == {}
        assert fake_client.pools == {}

    async def test_update_after_delete_is_not_found(self, gateway_manager):
        """测试删除后更新为 NOT_FOUND"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID
        )
        await gateway_manager.delete_load_balancer("vs", "pool", PORTS, None, CLUSTER_ID)

        with pytest.raises(GatewayError) as exc_info:
            await gateway_manager.update_load_balancer(
                "pool-http", "vs-http", MEMBERS, 31313, 80
            )
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    async def test_repeated_port_update(self, gateway_manager):
        """测试多次更新端口后虚拟服务使用最后的端口"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], None, CLUSTER_ID
        )
        for port in (8080, 8081, 8081):
            await gateway_manager.update_load_balancer(
                "pool-http", "vs-http", MEMBERS, 31313, port
            )

        virtual_service = await gateway_manager.virtual_services.get_details("vs-http")
        assert virtual_service.port == 8081

    async def test_cancelled_token(self, gateway_manager, fake_client):
        """测试取消后不再修改网关"""
        token = CancelToken()
        token.cancel()

        with pytest.raises(GatewayError) as exc_info:
            await gateway_manager.create_load_balancer(
                "vs", "pool", MEMBERS, PORTS, None, CLUSTER_ID, token=token
            )
        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert fake_client.writes == []


class TestOneArmLoadBalancer:
    """测试单臂拓扑"""

    ONE_ARM = OneArm(start_ip="192.168.8.2", end_ip="192.168.8.100")

    async def test_lifecycle(self, gateway_manager, fake_client):
        """测试单臂拓扑下DNAT规则和共享记录"""
        external_ip = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS, self.ONE_ARM, CLUSTER_ID
        )
        assert external_ip == "10.0.0.10"

        rule = await gateway_manager.nat_rules.get_details("dnat-vs-http")
        assert rule.external_address == external_ip
        assert rule.internal_address == "192.168.8.2"
        assert rule.external_port == 80
        assert rule.internal_port == 80

        virtual_service = await gateway_manager.virtual_services.get_details("vs-https")
        assert virtual_service.virtual_ip == "192.168.8.2"
        assert fake_client.virtual_ips() == [external_ip]
        assert (
            await gateway_manager.get_load_balancer("vs-http", self.ONE_ARM)
            == external_ip
        )

        await gateway_manager.update_load_balancer(
            "pool-http", "vs-http", MEMBERS, 31313, 8080, self.ONE_ARM
        )
        rule = await gateway_manager.nat_rules.get_details("dnat-vs-http")
        assert rule.external_port == 8080
        assert rule.internal_port == 8080

        await gateway_manager.delete_load_balancer(
            "vs", "pool", PORTS, self.ONE_ARM, CLUSTER_ID
        )
        assert fake_client.nat_rules == {}
        assert fake_client.virtual_ips() == []

    async def test_retry_reuses_addresses_from_dnat(self, gateway_manager, fake_client):
        """测试虚拟服务创建失败后重试复用DNAT规则中的地址"""
        fake_client.pending_reads = 100
        with pytest.raises(GatewayError):
            await gateway_manager.create_load_balancer(
                "vs", "pool", MEMBERS, PORTS[:1], self.ONE_ARM, CLUSTER_ID
            )
        assert len(fake_client.nat_rules) == 1

        fake_client.pending_reads = 0
        for vs_id in fake_client._unready:
            fake_client._unready[vs_id] = 0

        external_ip = await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], self.ONE_ARM, CLUSTER_ID
        )
        assert external_ip == "10.0.0.10"
        assert len(fake_client.nat_rules) == 1
        assert fake_client.virtual_ips() == [external_ip]

    async def test_delete_after_vs_removed_cleans_record(self, gateway_manager, fake_client):
        """测试虚拟服务已删除而DNAT规则残留时，删除仍清理共享记录"""
        await gateway_manager.create_load_balancer(
            "vs", "pool", MEMBERS, PORTS[:1], self.ONE_ARM, CLUSTER_ID
        )
        fake_client.virtual_services.clear()

        await gateway_manager.delete_load_balancer(
            "vs", "pool", PORTS[:1], self.ONE_ARM, CLUSTER_ID
        )
        assert fake_client.nat_rules == {}
        assert fake_client.pools == {}
        assert fake_client.virtual_ips() == []
