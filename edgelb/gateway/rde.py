# -*- coding: utf-8 -*-
"""
共享记录管理
维护集群所有已分配外部虚拟IP列表，使用ETag做乐观并发控制
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import RdeSnapshot

# 虚拟IP列表在记录文档中的位置
VIRTUAL_IPS_PATH = ("entity", "status", "virtual_IPs")


def extract_virtual_ips(document: Dict[str, Any]) -> List[str]:
    """从记录文档中读取虚拟IP列表，缺失时返回空列表"""
    node: Any = document
    for key in VIRTUAL_IPS_PATH:
        if not isinstance(node, dict) or key not in node:
            return []
        node = node[key]
    return list(node or [])


def with_virtual_ips(document: Dict[str, Any], virtual_ips: List[str]) -> Dict[str, Any]:
    """返回替换了虚拟IP列表的文档副本"""
    updated = copy.deepcopy(document)
    node = updated
    for key in VIRTUAL_IPS_PATH[:-1]:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[VIRTUAL_IPS_PATH[-1]] = list(virtual_ips)
    return updated


class RdeManager:
    """共享记录管理器"""

    def __init__(self, client: GatewayClient, cluster_id: str, max_retries: int = 10):
        """
        初始化共享记录管理器

        Args:
            client: 网关客户端
            cluster_id: 集群标识，即记录ID
            max_retries: 版本冲突时的最大重试次数
        """
        self.client = client
        self.cluster_id = cluster_id
        self.max_retries = max_retries
        self.logger = logging.getLogger("edgelb.RdeManager")

    async def get_virtual_ips(self) -> RdeSnapshot:
        """读取虚拟IP列表及其版本标记"""
        document, etag = await self.client.get_entity(self.cluster_id)
        return RdeSnapshot(
            virtual_ips=extract_virtual_ips(document), etag=etag, document=document
        )

    async def update_virtual_ips(
        self,
        virtual_ips: List[str],
        etag: str,
        document: Dict[str, Any],
        token: Optional[CancelToken] = None,
    ) -> int:
        """
        条件写入虚拟IP列表

        Args:
            virtual_ips: 新的虚拟IP列表
            etag: 读取时得到的版本标记
            document: 读取时得到的记录文档

        Returns:
            int: HTTP状态码

        Raises:
            GatewayError: 版本标记过期时 kind 为 PRECONDITION_FAILED，记录不变
        """
        status = await self.client.put_entity(
            self.cluster_id, with_virtual_ips(document, virtual_ips), etag, token
        )
        self.logger.debug(
            "[共享记录][%s]虚拟IP列表已更新: %s", self.cluster_id, virtual_ips
        )
        return status

    async def add_virtual_ip(self, ip: str, token: Optional[CancelToken] = None):
        """将IP加入虚拟IP列表，已存在时不写入"""

        def add(current: List[str]) -> Optional[List[str]]:
            if ip in current:
                return None
            return current + [ip]

        await self._modify(add, f"添加虚拟IP {ip}", token)

    async def remove_virtual_ip(self, ip: str, token: Optional[CancelToken] = None):
        """从虚拟IP列表移除IP，不存在时不写入"""

        def remove(current: List[str]) -> Optional[List[str]]:
            if ip not in current:
                return None
            return [existing for existing in current if existing != ip]

        await self._modify(remove, f"移除虚拟IP {ip}", token)

    async def _modify(
        self,
        mutate: Callable[[List[str]], Optional[List[str]]],
        description: str,
        token: Optional[CancelToken],
    ):
        """读取-修改-写入循环，版本冲突时重新读取后重试"""
        token = ensure_token(token)

        for attempt in range(self.max_retries):
            token.raise_if_cancelled(description)

            snapshot = await self.get_virtual_ips()
            updated = mutate(list(snapshot.virtual_ips))
            if updated is None:
                self.logger.debug(
                    "[共享记录][%s]%s: 无需修改", self.cluster_id, description
                )
                return

            try:
                await self.update_virtual_ips(
                    updated, snapshot.etag, snapshot.document, token
                )
                self.logger.info("[共享记录][%s]%s 成功", self.cluster_id, description)
                return
            except GatewayError as e:
                if e.kind is not ErrorKind.PRECONDITION_FAILED:
                    raise
                self.logger.warning(
                    "[共享记录][%s]%s 版本冲突 (%d/%d)，重新读取后重试",
                    self.cluster_id,
                    description,
                    attempt + 1,
                    self.max_retries,
                )

        raise GatewayError(
            ErrorKind.PRECONDITION_FAILED,
            f"{description} 在 {self.max_retries} 次版本冲突后放弃",
            resource_type="entity",
            operation="update",
            resource_name=self.cluster_id,
            status_code=412,
        )
