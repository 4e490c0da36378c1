# -*- coding: utf-8 -*-
"""
虚拟服务管理

虚拟服务状态: Absent -> Pending -> Ready -> Absent
服务引擎组扩容期间后端返回忙碌或虚拟服务尚未就绪，均视为 PENDING 并有界重试
"""

import logging
from typing import Optional

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.core.retry import RetryPolicy, retry_on_pending
from edgelb.gateway.rde import RdeManager
from edgelb.models import EntityRef, VirtualService, is_valid_name

SUPPORTED_PROTOCOLS = ("HTTP", "HTTPS")


class VirtualServiceManager:
    """虚拟服务的幂等增删改查"""

    def __init__(
        self,
        client: GatewayClient,
        gateway_ref: EntityRef,
        retry_policy: Optional[RetryPolicy] = None,
        rde_update_retries: int = 10,
    ):
        """
        初始化虚拟服务管理器

        Args:
            client: 网关客户端
            gateway_ref: 已缓存的网关引用
            retry_policy: PENDING 状态的默认重试策略
            rde_update_retries: 共享记录版本冲突的最大重试次数
        """
        self.client = client
        self.gateway_ref = gateway_ref
        self.retry_policy = retry_policy or RetryPolicy()
        self.rde_update_retries = rde_update_retries
        self.logger = logging.getLogger("edgelb.VirtualServiceManager")

    def rde_for(self, owner_tag: str) -> RdeManager:
        """返回集群对应的共享记录管理器"""
        return RdeManager(self.client, owner_tag, max_retries=self.rde_update_retries)

    async def get_details(self, name: str) -> Optional[VirtualService]:
        if not is_valid_name(name):
            return None
        return await self.client.find_virtual_service(self.gateway_ref.id, name)

    async def get(self, name: str) -> Optional[EntityRef]:
        """按名称查找虚拟服务，不存在时返回None"""
        virtual_service = await self.get_details(name)
        return virtual_service.ref() if virtual_service else None

    def _error(self, kind: ErrorKind, message: str, operation: str, name: str):
        return GatewayError(
            kind,
            message,
            gateway=self.gateway_ref.name,
            resource_type="virtual_service",
            operation=operation,
            resource_name=name,
        )

    def _ensure_ready(self, virtual_service: VirtualService, operation: str):
        if not virtual_service.is_ready:
            raise self._error(
                ErrorKind.PENDING,
                f"虚拟服务 [{virtual_service.name}] 尚未就绪，"
                f"当前状态 {virtual_service.health_status}",
                operation,
                virtual_service.name,
            )

    async def create(
        self,
        name: str,
        pool_ref: EntityRef,
        seg_ref: EntityRef,
        internal_ip: str,
        external_ip: str,
        protocol: str,
        external_port: int,
        use_ssl: bool,
        cert_alias: str,
        owner_tag: str,
        retry_policy: Optional[RetryPolicy] = None,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """
        创建虚拟服务并将外部地址记入共享记录

        Args:
            name: 虚拟服务名称
            pool_ref: 绑定的负载均衡池
            seg_ref: 服务引擎组
            internal_ip: 虚拟服务监听地址
            external_ip: 对外地址，记入共享记录
            protocol: HTTP 或 HTTPS
            external_port: 监听端口
            use_ssl: 是否启用SSL
            cert_alias: 证书别名，为空时使用 "<owner_tag>-cert"
            owner_tag: 集群标识，为空时不更新共享记录
            retry_policy: 覆盖默认的 PENDING 重试策略
            token: 取消令牌

        Returns:
            EntityRef: 虚拟服务引用
        """
        token = ensure_token(token)
        protocol = protocol.upper()
        if protocol not in SUPPORTED_PROTOCOLS:
            raise self._error(
                ErrorKind.INVALID_ARGUMENT,
                f"不支持的协议 {protocol}",
                "create",
                name,
            )

        async def create_once() -> EntityRef:
            return await self._create_once(
                name,
                pool_ref,
                seg_ref,
                internal_ip,
                protocol,
                external_port,
                use_ssl,
                cert_alias or f"{owner_tag}-cert",
                token,
            )

        ref = await retry_on_pending(
            create_once,
            retry_policy or self.retry_policy,
            token,
            f"创建虚拟服务 {name}",
        )

        if owner_tag:
            await self.rde_for(owner_tag).add_virtual_ip(external_ip, token)
        else:
            self.logger.debug("[虚拟服务][%s]未指定集群标识，跳过共享记录", name)

        return ref

    async def _create_once(
        self,
        name: str,
        pool_ref: EntityRef,
        seg_ref: EntityRef,
        virtual_ip: str,
        protocol: str,
        port: int,
        use_ssl: bool,
        cert_alias: str,
        token: CancelToken,
    ) -> EntityRef:
        existing = await self.get_details(name)
        if existing:
            if existing.pool_ref.name != pool_ref.name or existing.port != port:
                self.logger.warning(
                    "[虚拟服务][%s]已存在但配置不同 (池 %s, 端口 %d)，保持现状",
                    name,
                    existing.pool_ref.name,
                    existing.port,
                )
            self._ensure_ready(existing, "create")
            self.logger.debug("[虚拟服务][%s]已存在且就绪", name)
            return existing.ref()

        certificate_ref = None
        if use_ssl:
            certificate_ref = await self.client.get_certificate(cert_alias)
            if certificate_ref is None:
                raise self._error(
                    ErrorKind.NOT_FOUND,
                    f"证书 [{cert_alias}] 不存在",
                    "create",
                    name,
                )

        virtual_service = VirtualService(
            name=name,
            gateway_ref=self.gateway_ref,
            pool_ref=pool_ref,
            seg_ref=seg_ref,
            virtual_ip=virtual_ip,
            port=port,
            protocol=protocol,
            use_ssl=use_ssl,
            certificate_ref=certificate_ref,
        )
        try:
            await self.client.create_virtual_service(virtual_service, token)
            self.logger.info(
                "[虚拟服务][%s]已提交创建: %s %s:%d", name, protocol, virtual_ip, port
            )
        except GatewayError as e:
            if e.kind is not ErrorKind.ALREADY_EXISTS:
                raise
            self.logger.debug("[虚拟服务][%s]已被并发创建", name)

        created = await self.get_details(name)
        if created is None:
            raise self._error(
                ErrorKind.BACKEND, f"虚拟服务 [{name}] 创建后未找到", "create", name
            )
        self._ensure_ready(created, "create")
        return created.ref()

    async def update_port(
        self,
        name: str,
        external_port: int,
        retry_policy: Optional[RetryPolicy] = None,
        token: Optional[CancelToken] = None,
    ) -> EntityRef:
        """
        更新虚拟服务的外部端口

        Raises:
            GatewayError: 虚拟服务不存在（含名称含控制字符）时 kind 为 NOT_FOUND
        """

        async def update_once() -> EntityRef:
            virtual_service = await self.get_details(name)
            if virtual_service is None:
                raise self._error(
                    ErrorKind.NOT_FOUND,
                    f"虚拟服务 [{name!r}] 不存在",
                    "update",
                    name,
                )
            self._ensure_ready(virtual_service, "update")

            if virtual_service.port == external_port:
                self.logger.debug("[虚拟服务][%s]端口未变化，跳过更新", name)
                return virtual_service.ref()

            await self.client.update_virtual_service(
                virtual_service.model_copy(update={"port": external_port}), token
            )
            self.logger.info(
                "[虚拟服务][%s]端口更新: %d -> %d",
                name,
                virtual_service.port,
                external_port,
            )
            return virtual_service.ref()

        return await retry_on_pending(
            update_once,
            retry_policy or self.retry_policy,
            token,
            f"更新虚拟服务端口 {name!r}",
        )

    async def delete(
        self,
        name: str,
        fail_if_absent: bool,
        external_ip: str,
        owner_tag: str,
        retry_policy: Optional[RetryPolicy] = None,
        token: Optional[CancelToken] = None,
    ):
        """
        删除虚拟服务并从共享记录移除外部地址

        fail_if_absent为False时，虚拟服务不存在也会清理共享记录
        """
        token = ensure_token(token)

        async def delete_once():
            virtual_service = await self.get_details(name)
            if virtual_service is None:
                if fail_if_absent:
                    raise self._error(
                        ErrorKind.NOT_FOUND,
                        f"虚拟服务 [{name!r}] 不存在",
                        "delete",
                        name,
                    )
                self.logger.debug("[虚拟服务][%s]不存在，跳过删除", name)
                return

            try:
                await self.client.delete_virtual_service(virtual_service.id, token)
            except GatewayError as e:
                if e.kind is not ErrorKind.NOT_FOUND or fail_if_absent:
                    raise
                self.logger.debug("[虚拟服务][%s]已被并发删除", name)
                return
            self.logger.info("[虚拟服务][%s]删除成功", name)

        await retry_on_pending(
            delete_once,
            retry_policy or self.retry_policy,
            token,
            f"删除虚拟服务 {name!r}",
        )

        if owner_tag and external_ip:
            await self.rde_for(owner_tag).remove_virtual_ip(external_ip, token)
