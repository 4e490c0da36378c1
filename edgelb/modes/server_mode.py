# -*- coding: utf-8 -*-
"""
Server模式
通过HTTP接口对外提供边缘网关负载均衡的创建、查询、更新和删除
"""

import asyncio
from typing import Optional

from fastapi import FastAPI

from edgelb.client.base import GatewayClient
from edgelb.client.cloudapi import CloudApiClient
from edgelb.core.config import Settings
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.core.retry import RetryPolicy
from edgelb.gateway.manager import GatewayManager
from .base_mode import BaseMode
from .lb_api import create_lb_router


class ServerMode(BaseMode):
    """Server模式实现"""

    mode_name = "server"

    def __init__(
        self,
        settings: Settings,
        gateway_manager: Optional[GatewayManager] = None,
        client: Optional[GatewayClient] = None,
    ):
        """
        初始化Server模式

        Args:
            settings: 全局配置
            gateway_manager: 已缓存网关信息的管理器，为空时首次请求时创建
            client: 网关客户端，为空时按配置创建 CloudApiClient
        """
        super().__init__(settings)
        self.app = None
        self.client = client
        self.gateway_manager = gateway_manager
        self._manager_lock = asyncio.Lock()

    def retry_policy(self) -> RetryPolicy:
        retry = self.settings.retry
        return RetryPolicy(
            attempts=retry.pending_retries,
            backoff_seconds=retry.pending_backoff_seconds,
        )

    def _create_client(self) -> GatewayClient:
        """按配置创建网关客户端"""
        vcd = self.settings.vcd
        if not vcd.host or not vcd.token:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                "未配置平台地址或访问令牌 (VCD_HOST / VCD_TOKEN)",
                resource_type="client",
                operation="init",
            )
        return CloudApiClient(
            vcd.host,
            vcd.token,
            api_version=vcd.api_version,
            insecure=vcd.insecure,
            task_poll_interval=self.settings.retry.task_poll_interval,
            task_poll_attempts=self.settings.retry.task_poll_attempts,
        )

    async def get_gateway_manager(self) -> GatewayManager:
        """返回网关管理器，首次调用时解析并缓存网关"""
        if self.gateway_manager is not None:
            return self.gateway_manager

        async with self._manager_lock:
            if self.gateway_manager is None:
                if self.client is None:
                    self.client = self._create_client()
                self.gateway_manager = await GatewayManager.create(
                    self.client,
                    self.settings.loadbalancer.vdc_network,
                    self.settings.loadbalancer.vip_subnet,
                    retry_policy=self.retry_policy(),
                    rde_update_retries=self.settings.retry.rde_update_retries,
                )
                self.logger.info(
                    "网关管理器初始化成功，网关 %s",
                    self.gateway_manager.gateway_ref.name,
                )
        return self.gateway_manager

    def _create_app(self) -> FastAPI:
        """创建FastAPI应用"""
        app = FastAPI(
            title=self.settings.app_name,
            version=self.settings.version,
            description="Edge LB Manager - Server模式",
        )

        @app.get("/")
        async def root():
            return {
                "code": 200,
                "data": dict(self.describe(), message="Edge LB Manager - Server模式"),
            }

        @app.get("/health")
        async def health():
            """健康检查"""
            return {
                "code": 200,
                "data": dict(
                    self.describe(),
                    status="healthy",
                    gateway_cached=self.gateway_manager is not None,
                ),
            }

        app.include_router(create_lb_router(self))

        return app

    async def start(self, host: str = "0.0.0.0", port: int = 8000):
        """启动Server模式"""
        self.logger.info("正在启动Server模式...")

        # 启动前解析网关，配置错误时直接失败
        await self.get_gateway_manager()
        self.app = self._create_app()
        await self.serve(self.app, host, port)

    async def stop(self):
        """停止服务"""
        self.logger.info("正在停止Server模式...")
        if self.client is not None:
            await self.client.close()
            self.client = None
        self.gateway_manager = None
