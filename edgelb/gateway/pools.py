# -*- coding: utf-8 -*-
"""
负载均衡池管理
成员列表在创建和更新时整体替换
"""

import logging
from typing import List, Optional

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import EntityRef, LoadBalancerPool, PoolSummary, is_valid_name


class PoolManager:
    """负载均衡池的幂等增删改查"""

    def __init__(self, client: GatewayClient, gateway_ref: EntityRef):
        self.client = client
        self.gateway_ref = gateway_ref
        self.logger = logging.getLogger("edgelb.PoolManager")

    async def get_details(self, name: str) -> Optional[LoadBalancerPool]:
        if not is_valid_name(name):
            return None
        return await self.client.find_pool(self.gateway_ref.id, name)

    async def get(self, name: str) -> Optional[EntityRef]:
        """按名称查找池，不存在时返回None"""
        pool = await self.get_details(name)
        return pool.ref() if pool else None

    async def get_summary(self, name: str) -> Optional[PoolSummary]:
        """返回池引用及成员数量"""
        pool = await self.get_details(name)
        if pool is None:
            return None
        return PoolSummary(ref=pool.ref(), member_count=pool.member_count)

    async def create(
        self,
        name: str,
        member_ips: List[str],
        port: int,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """
        创建池

        同名池已存在时按 update 替换成员和端口，一致时不发起写操作
        """
        ensure_token(token).raise_if_cancelled("创建负载均衡池")

        if await self.get_details(name):
            self.logger.debug("[负载均衡池][%s]已存在，同步成员和端口", name)
            return await self.update(name, member_ips, port, token)

        pool = LoadBalancerPool(
            name=name,
            gateway_ref=self.gateway_ref,
            member_ips=list(member_ips),
            member_port=port,
        )
        try:
            await self.client.create_pool(pool, token)
        except GatewayError as e:
            if e.kind is not ErrorKind.ALREADY_EXISTS:
                raise
            self.logger.debug("[负载均衡池][%s]已被并发创建", name)

        created = await self.get_details(name)
        if created is None:
            raise GatewayError(
                ErrorKind.BACKEND,
                f"负载均衡池 [{name}] 创建后未找到",
                gateway=self.gateway_ref.name,
                resource_type="pool",
                operation="create",
                resource_name=name,
            )

        self.logger.info(
            "[负载均衡池][%s]创建成功，成员 %s，端口 %d", name, member_ips, port
        )
        return created.ref()

    async def update(
        self,
        name: str,
        member_ips: List[str],
        port: int,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """
        替换池的成员列表和端口

        Raises:
            GatewayError: 池不存在时 kind 为 NOT_FOUND
        """
        ensure_token(token).raise_if_cancelled("更新负载均衡池")

        pool = await self.get_details(name)
        if pool is None:
            raise GatewayError(
                ErrorKind.NOT_FOUND,
                f"负载均衡池 [{name}] 不存在",
                gateway=self.gateway_ref.name,
                resource_type="pool",
                operation="update",
                resource_name=name,
            )

        if pool.member_ips == list(member_ips) and pool.member_port == port:
            self.logger.debug("[负载均衡池][%s]无变化，跳过更新", name)
            return pool.ref()

        await self.client.update_pool(
            pool.model_copy(update={"member_ips": list(member_ips), "member_port": port}),
            token,
        )
        self.logger.info(
            "[负载均衡池][%s]更新成功，成员 %s，端口 %d", name, member_ips, port
        )
        return pool.ref()

    async def ensure(
        self,
        name: str,
        member_ips: List[str],
        port: int,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """不存在时创建，存在时同步成员和端口"""
        return await self.create(name, member_ips, port, token)

    async def delete(
        self, name: str, fail_if_absent: bool, token: Optional[CancelToken] = None
    ):
        """
        删除池

        仍被虚拟服务引用的池由后端拒绝，错误原样抛出
        """
        ensure_token(token).raise_if_cancelled("删除负载均衡池")

        pool = await self.get_details(name)
        if pool is None:
            if fail_if_absent:
                raise GatewayError(
                    ErrorKind.NOT_FOUND,
                    f"负载均衡池 [{name}] 不存在",
                    gateway=self.gateway_ref.name,
                    resource_type="pool",
                    operation="delete",
                    resource_name=name,
                )
            self.logger.debug("[负载均衡池][%s]不存在，跳过删除", name)
            return

        try:
            await self.client.delete_pool(pool.id, token)
        except GatewayError as e:
            if e.kind is not ErrorKind.NOT_FOUND or fail_if_absent:
                raise
            self.logger.debug("[负载均衡池][%s]已被并发删除", name)
            return

        self.logger.info("[负载均衡池][%s]删除成功", name)
