# -*- coding: utf-8 -*-
"""
网关客户端接口
定义网关管理器依赖的远程API操作，具体实现见 cloudapi.py
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from edgelb.core.cancellation import CancelToken
from edgelb.models import (
    EntityRef,
    IpRange,
    LoadBalancerPool,
    NatRule,
    VirtualService,
)


class GatewayClient(ABC):
    """
    已认证的网关客户端

    所有方法在失败时抛出 GatewayError，kind 为 NOT_FOUND、PENDING、
    ALREADY_EXISTS、PRECONDITION_FAILED 或 BACKEND

    写操作接受可选的取消令牌，后端以异步任务执行时在轮询间隙检查
    """

    # 网关
    @abstractmethod
    async def get_gateway_for_network(self, network_name: str) -> Optional[EntityRef]:
        """按VDC网络名称查找其连接的边缘网关"""

    @abstractmethod
    async def get_gateway_ip_ranges(self, gateway_id: str) -> List[IpRange]:
        """获取网关上行链路已分配的IP段"""

    # NAT规则
    @abstractmethod
    async def list_nat_rules(self, gateway_id: str) -> List[NatRule]:
        pass

    @abstractmethod
    async def create_nat_rule(
        self, gateway_id: str, rule: NatRule, token: Optional[CancelToken] = None
    ):
        pass

    @abstractmethod
    async def update_nat_rule(
        self, gateway_id: str, rule: NatRule, token: Optional[CancelToken] = None
    ):
        """rule.id 必须已设置"""

    @abstractmethod
    async def delete_nat_rule(
        self, gateway_id: str, rule_id: str, token: Optional[CancelToken] = None
    ):
        pass

    # 负载均衡池
    @abstractmethod
    async def find_pool(self, gateway_id: str, name: str) -> Optional[LoadBalancerPool]:
        pass

    @abstractmethod
    async def create_pool(
        self, pool: LoadBalancerPool, token: Optional[CancelToken] = None
    ):
        pass

    @abstractmethod
    async def update_pool(
        self, pool: LoadBalancerPool, token: Optional[CancelToken] = None
    ):
        pass

    @abstractmethod
    async def delete_pool(self, pool_id: str, token: Optional[CancelToken] = None):
        pass

    # 服务引擎组
    @abstractmethod
    async def list_seg_assignments(self, gateway_id: str) -> List[EntityRef]:
        """返回分配给网关的服务引擎组引用"""

    # 虚拟服务
    @abstractmethod
    async def list_virtual_services(self, gateway_id: str) -> List[VirtualService]:
        pass

    @abstractmethod
    async def find_virtual_service(
        self, gateway_id: str, name: str
    ) -> Optional[VirtualService]:
        pass

    @abstractmethod
    async def create_virtual_service(
        self, virtual_service: VirtualService, token: Optional[CancelToken] = None
    ):
        pass

    @abstractmethod
    async def update_virtual_service(
        self, virtual_service: VirtualService, token: Optional[CancelToken] = None
    ):
        pass

    @abstractmethod
    async def delete_virtual_service(
        self, virtual_service_id: str, token: Optional[CancelToken] = None
    ):
        pass

    # 证书
    @abstractmethod
    async def get_certificate(self, alias: str) -> Optional[EntityRef]:
        pass

    # 共享记录
    @abstractmethod
    async def get_entity(self, entity_id: str) -> Tuple[Dict[str, Any], str]:
        """返回 (文档, ETag)"""

    @abstractmethod
    async def put_entity(
        self,
        entity_id: str,
        document: Dict[str, Any],
        etag: str,
        token: Optional[CancelToken] = None,
    ) -> int:
        """条件写入，ETag不匹配时抛出 PRECONDITION_FAILED；成功返回HTTP状态码"""

    async def close(self):
        """释放连接"""
