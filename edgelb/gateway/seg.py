# -*- coding: utf-8 -*-
"""
服务引擎组查询
"""

import logging

from edgelb.client.base import GatewayClient
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import EntityRef


class ServiceEngineGroupLookup:
    """查询网关使用的服务引擎组（只读）"""

    def __init__(self, client: GatewayClient, gateway_ref: EntityRef):
        self.client = client
        self.gateway_ref = gateway_ref
        self.logger = logging.getLogger("edgelb.ServiceEngineGroupLookup")

    async def get(self) -> EntityRef:
        """
        返回分配给网关的服务引擎组

        Raises:
            GatewayError: 网关未分配服务引擎组时 kind 为 FATAL_CONFIG
        """
        assignments = await self.client.list_seg_assignments(self.gateway_ref.id)
        if not assignments:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                f"网关 [{self.gateway_ref.name}] 未分配服务引擎组",
                gateway=self.gateway_ref.name,
                resource_type="service_engine_group",
                operation="get",
            )

        if len(assignments) > 1:
            self.logger.debug(
                "[服务引擎组]网关 %s 有 %d 个服务引擎组，使用 %s",
                self.gateway_ref.name,
                len(assignments),
                assignments[0].name,
            )
        return assignments[0]
