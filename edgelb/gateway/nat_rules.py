# -*- coding: utf-8 -*-
"""
DNAT规则管理
"""

import logging
from typing import Optional

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import EntityRef, NatRule, is_valid_name


class NatRuleManager:
    """DNAT规则的幂等增删改查"""

    def __init__(self, client: GatewayClient, gateway_ref: EntityRef):
        self.client = client
        self.gateway_ref = gateway_ref
        self.logger = logging.getLogger("edgelb.NatRuleManager")

    async def get_details(self, name: str) -> Optional[NatRule]:
        """按名称查找规则，不存在时返回None"""
        if not is_valid_name(name):
            return None
        rules = await self.client.list_nat_rules(self.gateway_ref.id)
        for rule in rules:
            if rule.name == name:
                return rule
        return None

    async def get(self, name: str) -> Optional[EntityRef]:
        rule = await self.get_details(name)
        return rule.ref() if rule else None

    async def create(
        self,
        name: str,
        external_ip: str,
        internal_ip: str,
        external_port: int,
        internal_port: int,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """创建DNAT规则，同名规则已存在时直接返回"""
        ensure_token(token).raise_if_cancelled("创建NAT规则")

        existing = await self.get_details(name)
        if existing:
            self.logger.debug("[NAT规则][%s]已存在，跳过创建", name)
            return existing.ref()

        rule = NatRule(
            name=name,
            external_address=external_ip,
            internal_address=internal_ip,
            external_port=external_port,
            internal_port=internal_port,
        )
        try:
            await self.client.create_nat_rule(self.gateway_ref.id, rule, token)
        except GatewayError as e:
            if e.kind is not ErrorKind.ALREADY_EXISTS:
                raise
            self.logger.debug("[NAT规则][%s]已被并发创建", name)

        created = await self.get_details(name)
        if created is None:
            raise GatewayError(
                ErrorKind.BACKEND,
                f"NAT规则 [{name}] 创建后未找到",
                gateway=self.gateway_ref.name,
                resource_type="nat_rule",
                operation="create",
                resource_name=name,
            )

        self.logger.info(
            "[NAT规则][%s]创建成功: %s:%d -> %s:%d",
            name,
            external_ip,
            external_port,
            internal_ip,
            internal_port,
        )
        return created.ref()

    async def update(
        self,
        name: str,
        external_ip: str,
        internal_ip: str,
        internal_port: int,
        external_port: Optional[int] = None,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """
        更新DNAT规则的目标

        Args:
            name: 规则名称
            external_ip: 外部地址
            internal_ip: 内部地址
            internal_port: 内部端口
            external_port: 外部端口，None表示保持不变

        Raises:
            GatewayError: 规则不存在时 kind 为 NOT_FOUND
        """
        ensure_token(token).raise_if_cancelled("更新NAT规则")

        rule = await self.get_details(name)
        if rule is None:
            raise GatewayError(
                ErrorKind.NOT_FOUND,
                f"NAT规则 [{name}] 不存在",
                gateway=self.gateway_ref.name,
                resource_type="nat_rule",
                operation="update",
                resource_name=name,
            )

        changes = {
            "external_address": external_ip,
            "internal_address": internal_ip,
            "internal_port": internal_port,
        }
        if external_port is not None:
            changes["external_port"] = external_port

        if all(getattr(rule, field) == value for field, value in changes.items()):
            self.logger.debug("[NAT规则][%s]无变化，跳过更新", name)
            return rule.ref()

        await self.client.update_nat_rule(
            self.gateway_ref.id, rule.model_copy(update=changes), token
        )
        self.logger.info("[NAT规则][%s]更新成功", name)
        return rule.ref()

    async def ensure(
        self,
        name: str,
        external_ip: str,
        internal_ip: str,
        external_port: int,
        internal_port: int,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """不存在时创建，目标不同时更新"""
        if await self.get_details(name) is None:
            return await self.create(
                name, external_ip, internal_ip, external_port, internal_port, token
            )
        return await self.update(
            name,
            external_ip,
            internal_ip,
            internal_port,
            external_port=external_port,
            token=token,
        )

    async def delete(
        self, name: str, fail_if_absent: bool, token: Optional[CancelToken] = None
    ):
        """删除DNAT规则，fail_if_absent为False时不存在视为成功"""
        ensure_token(token).raise_if_cancelled("删除NAT规则")

        rule = await self.get_details(name)
        if rule is None:
            if fail_if_absent:
                raise GatewayError(
                    ErrorKind.NOT_FOUND,
                    f"NAT规则 [{name}] 不存在",
                    gateway=self.gateway_ref.name,
                    resource_type="nat_rule",
                    operation="delete",
                    resource_name=name,
                )
            self.logger.debug("[NAT规则][%s]不存在，跳过删除", name)
            return

        try:
            await self.client.delete_nat_rule(self.gateway_ref.id, rule.id, token)
        except GatewayError as e:
            if e.kind is not ErrorKind.NOT_FOUND or fail_if_absent:
                raise
            self.logger.debug("[NAT规则][%s]已被并发删除", name)
            return

        self.logger.info("[NAT规则][%s]删除成功", name)
