# -*- coding: utf-8 -*-
"""
网关管理器
将地址分配、负载均衡池、服务引擎组、虚拟服务（及单臂DNAT规则）组合为一个逻辑负载均衡

组合操作不做回滚：每一步都是幂等的，调用方重试整个操作即可从中断处继续
"""

import logging
from typing import List, Optional, Tuple

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.core.retry import RetryPolicy
from edgelb.gateway.address_allocator import AddressAllocator
from edgelb.gateway.nat_rules import NatRuleManager
from edgelb.gateway.pools import PoolManager
from edgelb.gateway.rde import RdeManager
from edgelb.gateway.seg import ServiceEngineGroupLookup
from edgelb.gateway.virtual_services import VirtualServiceManager
from edgelb.models import (
    EntityRef,
    OneArm,
    PortDetails,
    derive_name,
    dnat_rule_name,
)


class GatewayManager:
    """边缘网关上的组合负载均衡管理器"""

    def __init__(
        self,
        client: GatewayClient,
        network_name: str,
        vip_subnet: str = "",
        retry_policy: Optional[RetryPolicy] = None,
        rde_update_retries: int = 10,
    ):
        """
        初始化网关管理器，使用前需调用 cache_gateway_details

        Args:
            client: 网关客户端
            network_name: VDC网络名称，用于定位边缘网关
            vip_subnet: 外部地址分配网段，为空表示不限
            retry_policy: 虚拟服务 PENDING 状态的重试策略
            rde_update_retries: 共享记录版本冲突的最大重试次数
        """
        self.client = client
        self.network_name = network_name
        self.vip_subnet = vip_subnet
        self.retry_policy = retry_policy or RetryPolicy()
        self.rde_update_retries = rde_update_retries
        self.logger = logging.getLogger("edgelb.GatewayManager")

        self._gateway_ref: Optional[EntityRef] = None
        self._nat_rules: Optional[NatRuleManager] = None
        self._pools: Optional[PoolManager] = None
        self._seg: Optional[ServiceEngineGroupLookup] = None
        self._virtual_services: Optional[VirtualServiceManager] = None
        self._allocator: Optional[AddressAllocator] = None

    @classmethod
    async def create(
        cls,
        client: GatewayClient,
        network_name: str,
        vip_subnet: str = "",
        retry_policy: Optional[RetryPolicy] = None,
        rde_update_retries: int = 10,
    ) -> "GatewayManager":
        """创建管理器并缓存网关信息"""
        manager = cls(client, network_name, vip_subnet, retry_policy, rde_update_retries)
        await manager.cache_gateway_details()
        return manager

    async def cache_gateway_details(self) -> EntityRef:
        """
        解析并缓存网关引用，仅执行一次

        Raises:
            GatewayError: 网络或网关不存在时 kind 为 FATAL_CONFIG
        """
        if self._gateway_ref is not None:
            return self._gateway_ref

        if not self.network_name:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                "未配置VDC网络名称",
                resource_type="gateway",
                operation="cache",
            )

        gateway_ref = await self.client.get_gateway_for_network(self.network_name)
        if gateway_ref is None or not gateway_ref.id:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                f"未找到VDC网络 [{self.network_name}] 连接的边缘网关",
                resource_type="gateway",
                operation="cache",
                resource_name=self.network_name,
            )

        self._gateway_ref = gateway_ref
        self._nat_rules = NatRuleManager(self.client, gateway_ref)
        self._pools = PoolManager(self.client, gateway_ref)
        self._seg = ServiceEngineGroupLookup(self.client, gateway_ref)
        self._virtual_services = VirtualServiceManager(
            self.client, gateway_ref, self.retry_policy, self.rde_update_retries
        )
        self._allocator = AddressAllocator(self.client, gateway_ref)

        self.logger.info(
            "[网关]网络 %s 对应网关 %s (%s)",
            self.network_name,
            gateway_ref.name,
            gateway_ref.id,
        )
        return gateway_ref

    def _require(self, component):
        if component is None:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                "网关信息尚未缓存，请先调用 cache_gateway_details",
                resource_type="gateway",
            )
        return component

    @property
    def gateway_ref(self) -> EntityRef:
        return self._require(self._gateway_ref)

    @property
    def nat_rules(self) -> NatRuleManager:
        return self._require(self._nat_rules)

    @property
    def pools(self) -> PoolManager:
        return self._require(self._pools)

    @property
    def seg(self) -> ServiceEngineGroupLookup:
        return self._require(self._seg)

    @property
    def virtual_services(self) -> VirtualServiceManager:
        return self._require(self._virtual_services)

    @property
    def allocator(self) -> AddressAllocator:
        return self._require(self._allocator)

    def rde_for(self, owner_tag: str) -> RdeManager:
        return RdeManager(self.client, owner_tag, max_retries=self.rde_update_retries)

    async def _existing_addresses(
        self,
        name_prefix: str,
        pool_name_prefix: str,
        port_details: List[PortDetails],
        one_arm: Optional[OneArm],
    ) -> Tuple[str, str]:
        """
        查找已存在的成员并返回其 (外部地址, 内部地址)，未找到的部分为空字符串

        单臂拓扑优先读取DNAT规则；仅有虚拟服务时只能得到内部地址
        """
        internal_ip = ""
        for port in port_details:
            vs_name = derive_name(name_prefix, port.port_suffix)
            pool_name = derive_name(pool_name_prefix, port.port_suffix)

            if one_arm:
                rule = await self.nat_rules.get_details(dnat_rule_name(vs_name))
                if rule:
                    return rule.external_address, rule.internal_address

            virtual_service = await self.virtual_services.get_details(vs_name)
            if virtual_service is None:
                continue
            if virtual_service.pool_ref.name != pool_name:
                raise GatewayError(
                    ErrorKind.INVALID_ARGUMENT,
                    f"虚拟服务 [{vs_name}] 已绑定到池 "
                    f"[{virtual_service.pool_ref.name}]，而不是 [{pool_name}]",
                    gateway=self.gateway_ref.name,
                    resource_type="virtual_service",
                    operation="create",
                    resource_name=vs_name,
                )
            if not one_arm:
                return virtual_service.virtual_ip, virtual_service.virtual_ip
            internal_ip = internal_ip or virtual_service.virtual_ip
        return "", internal_ip

    async def create_load_balancer(
        self,
        name_prefix: str,
        pool_name_prefix: str,
        member_ips: List[str],
        port_details: List[PortDetails],
        one_arm: Optional[OneArm],
        owner_tag: str,
        token: Optional[CancelToken] = None,
    ) -> str:
        """
        创建（或继续创建）组合负载均衡

        Args:
            name_prefix: 虚拟服务名称前缀
            pool_name_prefix: 池名称前缀
            member_ips: 后端成员地址
            port_details: 监听端口列表，按顺序处理
            one_arm: 单臂地址段，None表示双臂
            owner_tag: 集群标识
            token: 取消令牌

        Returns:
            str: 共享的外部地址
        """
        token = ensure_token(token)
        if not port_details:
            raise GatewayError(
                ErrorKind.INVALID_ARGUMENT,
                "端口列表为空",
                gateway=self.gateway_ref.name,
                resource_type="load_balancer",
                operation="create",
                resource_name=name_prefix,
            )

        token.raise_if_cancelled("创建负载均衡")
        addresses = await self._existing_addresses(
            name_prefix, pool_name_prefix, port_details, one_arm
        )
        external_ip, internal_ip = addresses
        if external_ip:
            self.logger.info(
                "[负载均衡][%s]复用已有地址 %s", name_prefix, external_ip
            )
        else:
            external_ip = await self.allocator.allocate(self.vip_subnet)
            if not one_arm:
                internal_ip = external_ip
            elif not internal_ip:
                internal_ip = await self.allocator.allocate_internal(one_arm)

        seg_ref = await self.seg.get()

        for port in port_details:
            token.raise_if_cancelled("创建负载均衡")
            vs_name = derive_name(name_prefix, port.port_suffix)
            pool_name = derive_name(pool_name_prefix, port.port_suffix)

            pool_ref = await self.pools.ensure(
                pool_name, member_ips, port.internal_port, token
            )

            if one_arm:
                await self.nat_rules.ensure(
                    dnat_rule_name(vs_name),
                    external_ip,
                    internal_ip,
                    port.external_port,
                    port.external_port,
                    token,
                )

            await self.virtual_services.create(
                vs_name,
                pool_ref,
                seg_ref,
                internal_ip,
                external_ip,
                port.protocol,
                port.external_port,
                port.use_ssl,
                port.cert_alias,
                owner_tag,
                token=token,
            )

        self.logger.info(
            "[负载均衡][%s]创建完成，外部地址 %s，端口 %s",
            name_prefix,
            external_ip,
            [port.external_port for port in port_details],
        )
        return external_ip

    async def get_load_balancer(
        self, virtual_service_name: str, one_arm: Optional[OneArm] = None
    ) -> str:
        """返回虚拟服务对应的外部地址，不存在时返回空字符串"""
        virtual_service = await self.virtual_services.get_details(virtual_service_name)
        if virtual_service is None:
            return ""

        if one_arm:
            rule = await self.nat_rules.get_details(dnat_rule_name(virtual_service_name))
            return rule.external_address if rule else ""

        return virtual_service.virtual_ip

    async def update_load_balancer(
        self,
        pool_name: str,
        virtual_service_name: str,
        member_ips: List[str],
        internal_port: int,
        external_port: int,
        one_arm: Optional[OneArm] = None,
        token: Optional[CancelToken] = None,
    ):
        """
        更新池成员/端口及虚拟服务外部端口

        Raises:
            GatewayError: 池或虚拟服务已不存在时 kind 为 NOT_FOUND
        """
        token = ensure_token(token)
        await self.pools.update(pool_name, member_ips, internal_port, token)

        if one_arm:
            rule_name = dnat_rule_name(virtual_service_name)
            rule = await self.nat_rules.get_details(rule_name)
            if rule is None:
                raise GatewayError(
                    ErrorKind.NOT_FOUND,
                    f"NAT规则 [{rule_name}] 不存在",
                    gateway=self.gateway_ref.name,
                    resource_type="nat_rule",
                    operation="update",
                    resource_name=rule_name,
                )
            await self.nat_rules.update(
                rule_name,
                rule.external_address,
                rule.internal_address,
                external_port,
                external_port=external_port,
                token=token,
            )

        await self.virtual_services.update_port(
            virtual_service_name, external_port, token=token
        )
        self.logger.info(
            "[负载均衡][%s]更新完成，成员 %s，内部端口 %d，外部端口 %d",
            virtual_service_name,
            member_ips,
            internal_port,
            external_port,
        )

    async def _external_address(
        self, virtual_service_name: str, one_arm: Optional[OneArm]
    ) -> str:
        """读取成员的外部地址，单臂拓扑下DNAT规则可能比虚拟服务存留更久"""
        if one_arm:
            rule = await self.nat_rules.get_details(dnat_rule_name(virtual_service_name))
            if rule:
                return rule.external_address
            return ""

        virtual_service = await self.virtual_services.get_details(virtual_service_name)
        return virtual_service.virtual_ip if virtual_service else ""

    async def delete_load_balancer(
        self,
        name_prefix: str,
        pool_name_prefix: str,
        port_details: List[PortDetails],
        one_arm: Optional[OneArm],
        owner_tag: str,
        token: Optional[CancelToken] = None,
    ):
        """
        删除组合负载均衡，已删除的部分跳过，可重复调用

        先从共享记录移除外部地址，再对每个端口依次删除虚拟服务、DNAT规则、池。
        共享记录写入失败时网关资源保持不变，重试仍能读到外部地址
        """
        token = ensure_token(token)

        external_ip = ""
        for port in port_details:
            external_ip = await self._external_address(
                derive_name(name_prefix, port.port_suffix), one_arm
            )
            if external_ip:
                break

        if owner_tag and external_ip:
            await self.rde_for(owner_tag).remove_virtual_ip(external_ip, token)

        for port in port_details:
            token.raise_if_cancelled("删除负载均衡")
            vs_name = derive_name(name_prefix, port.port_suffix)
            pool_name = derive_name(pool_name_prefix, port.port_suffix)

            await self.virtual_services.delete(
                vs_name, False, external_ip, owner_tag, token=token
            )
            if one_arm:
                await self.nat_rules.delete(dnat_rule_name(vs_name), False, token)
            await self.pools.delete(pool_name, False, token)

        self.logger.info("[负载均衡][%s]删除完成", name_prefix)

    async def get_virtual_ips(self, owner_tag: str) -> List[str]:
        """读取集群共享记录中的虚拟IP列表"""
        snapshot = await self.rde_for(owner_tag).get_virtual_ips()
        return snapshot.virtual_ips
