# -*- coding: utf-8 -*-
"""
基础模式类
持有配置，提供服务描述和 uvicorn 运行循环，子类负责构建应用和释放资源
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI

from edgelb.core.config import Settings


class BaseMode(ABC):
    """基础模式抽象类"""

    mode_name = "base"

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = logging.getLogger(f"edgelb.{self.__class__.__name__}")

    def describe(self) -> Dict[str, Any]:
        """根路由和健康检查共用的服务信息"""
        return {
            "app": self.settings.app_name,
            "version": self.settings.version,
            "mode": self.mode_name,
            "network": self.settings.loadbalancer.vdc_network,
            "cluster_id": self.settings.cluster_id,
        }

    async def serve(self, app: FastAPI, host: str, port: int):
        """运行 uvicorn 直到退出，退出后总会调用 stop"""
        config = uvicorn.Config(
            app, host=host, port=port, log_level=self.settings.log_level.lower()
        )
        server = uvicorn.Server(config)

        self.logger.info("%s模式启动成功，监听 %s:%d", self.mode_name, host, port)
        try:
            await server.serve()
        finally:
            await self.stop()

    @abstractmethod
    async def start(self, host: str = "0.0.0.0", port: int = 8000):
        """启动服务"""

    @abstractmethod
    async def stop(self):
        """停止服务"""
