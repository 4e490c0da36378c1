# -*- coding: utf-8 -*-
"""
内存网关
实现 GatewayClient 接口，用于不依赖真实平台的单元测试
"""

import copy
import itertools
from typing import Any, Dict, List, Optional, Tuple

from edgelb.client.base import GatewayClient
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.core.retry import RetryPolicy
from edgelb.models import (
    EntityRef,
    IpRange,
    LoadBalancerPool,
    NatRule,
    VirtualService,
)
from edgelb.gateway.rde import extract_virtual_ips, with_virtual_ips

GATEWAY = EntityRef(name="edge-gw", id="urn:gateway:1")
SEG = EntityRef(name="seg-1", id="urn:seg:1")
NETWORK = "ovdc-net"
CLUSTER_ID = "urn:cluster:1"

# 测试中不等待
FAST_RETRY = RetryPolicy(attempts=5, backoff_seconds=0)


class FakeGatewayClient(GatewayClient):
    """
    内存中的网关

    - 新建虚拟服务的健康状态由 pending_reads 控制，查询若干次后变为 UP
    - busy_creates 指定虚拟服务创建被拒绝（BUSY）的次数
    - concurrent_writers 在共享记录写入前模拟其他控制器的写入
    """

    def __init__(
        self,
        ip_ranges: Optional[List[Tuple[str, str]]] = None,
        seg_assignments: Optional[List[EntityRef]] = None,
    ):
        self.networks: Dict[str, EntityRef] = {NETWORK: GATEWAY}
        self.ip_ranges = [
            IpRange(start_address=start, end_address=end)
            for start, end in (ip_ranges or [("10.0.0.10", "10.0.0.20")])
        ]
        self.seg_assignments = [SEG] if seg_assignments is None else seg_assignments
        self.certificates: Dict[str, EntityRef] = {}

        self.nat_rules: Dict[str, NatRule] = {}
        self.pools: Dict[str, LoadBalancerPool] = {}
        self.virtual_services: Dict[str, VirtualService] = {}
        self.entities: Dict[str, Dict[str, Any]] = {}
        self.versions: Dict[str, int] = {}

        self.pending_reads = 0
        self.busy_creates = 0
        self.busy_deletes = 0
        self.concurrent_writers: List[str] = []
        self.writes: List[Tuple[str, str]] = []
        self._ids = itertools.count(1)
        self._unready: Dict[str, int] = {}

        self.add_entity(CLUSTER_ID)

    # 测试辅助
    def add_entity(self, entity_id: str, virtual_ips: Optional[List[str]] = None):
        self.entities[entity_id] = with_virtual_ips(
            {"entityType": "capvcdCluster", "entity": {"status": {}}},
            virtual_ips or [],
        )
        self.versions[entity_id] = 1

    def add_certificate(self, alias: str):
        self.certificates[alias] = EntityRef(name=alias, id=f"urn:cert:{alias}")

    def virtual_ips(self, entity_id: str = CLUSTER_ID) -> List[str]:
        return extract_virtual_ips(self.entities[entity_id])

    def writes_of(self, operation: str) -> List[str]:
        return [name for op, name in self.writes if op == operation]

    def _next_id(self, kind: str) -> str:
        return f"urn:{kind}:{next(self._ids)}"

    @staticmethod
    def _error(kind: ErrorKind, message: str, status_code: int) -> GatewayError:
        return GatewayError(kind, message, status_code=status_code)

    # 网关
    async def get_gateway_for_network(self, network_name: str) -> Optional[EntityRef]:
        return self.networks.get(network_name)

    async def get_gateway_ip_ranges(self, gateway_id: str) -> List[IpRange]:
        return list(self.ip_ranges)

    # NAT规则
    async def list_nat_rules(self, gateway_id: str) -> List[NatRule]:
        return [rule.model_copy() for rule in self.nat_rules.values()]

    async def create_nat_rule(self, gateway_id: str, rule: NatRule, token=None):
        if any(existing.name == rule.name for existing in self.nat_rules.values()):
            raise self._error(ErrorKind.ALREADY_EXISTS, "DUPLICATE_NAME", 400)
        rule_id = self._next_id("nat")
        self.nat_rules[rule_id] = rule.model_copy(update={"id": rule_id})
        self.writes.append(("create_nat_rule", rule.name))

    async def update_nat_rule(self, gateway_id: str, rule: NatRule, token=None):
        if rule.id not in self.nat_rules:
            raise self._error(ErrorKind.NOT_FOUND, "NAT rule not found", 404)
        self.nat_rules[rule.id] = rule.model_copy()
        self.writes.append(("update_nat_rule", rule.name))

    async def delete_nat_rule(self, gateway_id: str, rule_id: str, token=None):
        rule = self.nat_rules.pop(rule_id, None)
        if rule is None:
            raise self._error(ErrorKind.NOT_FOUND, "NAT rule not found", 404)
        self.writes.append(("delete_nat_rule", rule.name))

    # 负载均衡池
    async def find_pool(self, gateway_id: str, name: str) -> Optional[LoadBalancerPool]:
        for pool in self.pools.values():
            if pool.name == name:
                return pool.model_copy(deep=True)
        return None

    async def create_pool(self, pool: LoadBalancerPool, token=None):
        if await self.find_pool(pool.gateway_ref.id, pool.name):
            raise self._error(ErrorKind.ALREADY_EXISTS, "already exists", 409)
        pool_id = self._next_id("pool")
        self.pools[pool_id] = pool.model_copy(update={"id": pool_id}, deep=True)
        self.writes.append(("create_pool", pool.name))

    async def update_pool(self, pool: LoadBalancerPool, token=None):
        if pool.id not in self.pools:
            raise self._error(ErrorKind.NOT_FOUND, "pool not found", 404)
        self.pools[pool.id] = pool.model_copy(deep=True)
        self.writes.append(("update_pool", pool.name))

    async def delete_pool(self, pool_id: str, token=None):
        pool = self.pools.get(pool_id)
        if pool is None:
            raise self._error(ErrorKind.NOT_FOUND, "pool not found", 404)
        if any(vs.pool_ref.id == pool_id for vs in self.virtual_services.values()):
            raise self._error(
                ErrorKind.BACKEND, f"pool {pool.name} is in use by a virtual service", 400
            )
        del self.pools[pool_id]
        self.writes.append(("delete_pool", pool.name))

    # 服务引擎组
    async def list_seg_assignments(self, gateway_id: str) -> List[EntityRef]:
        return list(self.seg_assignments)

    # 虚拟服务
    def _observe(self, virtual_service: VirtualService) -> VirtualService:
        remaining = self._unready.get(virtual_service.id, 0)
        if remaining > 0:
            self._unready[virtual_service.id] = remaining - 1
            return virtual_service.model_copy(update={"health_status": "PENDING"})
        return virtual_service.model_copy(update={"health_status": "UP"})

    async def list_virtual_services(self, gateway_id: str) -> List[VirtualService]:
        return [vs.model_copy() for vs in self.virtual_services.values()]

    async def find_virtual_service(
        self, gateway_id: str, name: str
    ) -> Optional[VirtualService]:
        for virtual_service in self.virtual_services.values():
            if virtual_service.name == name:
                return self._observe(virtual_service)
        return None

    async def create_virtual_service(self, virtual_service: VirtualService, token=None):
        if self.busy_creates > 0:
            self.busy_creates -= 1
            raise self._error(ErrorKind.PENDING, "BUSY_ENTITY", 400)
        if any(
            existing.name == virtual_service.name
            for existing in self.virtual_services.values()
        ):
            raise self._error(ErrorKind.ALREADY_EXISTS, "DUPLICATE_NAME", 400)
        if virtual_service.pool_ref.id not in self.pools:
            raise self._error(ErrorKind.BACKEND, "pool reference is invalid", 400)

        vs_id = self._next_id("vs")
        self.virtual_services[vs_id] = virtual_service.model_copy(update={"id": vs_id})
        self._unready[vs_id] = self.pending_reads
        self.writes.append(("create_virtual_service", virtual_service.name))

    async def update_virtual_service(self, virtual_service: VirtualService, token=None):
        if virtual_service.id not in self.virtual_services:
            raise self._error(ErrorKind.NOT_FOUND, "virtual service not found", 404)
        self.virtual_services[virtual_service.id] = virtual_service.model_copy()
        self.writes.append(("update_virtual_service", virtual_service.name))

    async def delete_virtual_service(self, virtual_service_id: str, token=None):
        if self.busy_deletes > 0:
            self.busy_deletes -= 1
            raise self._error(ErrorKind.PENDING, "BUSY_ENTITY", 400)
        virtual_service = self.virtual_services.pop(virtual_service_id, None)
        if virtual_service is None:
            raise self._error(ErrorKind.NOT_FOUND, "virtual service not found", 404)
        self._unready.pop(virtual_service_id, None)
        self.writes.append(("delete_virtual_service", virtual_service.name))

    # 证书
    async def get_certificate(self, alias: str) -> Optional[EntityRef]:
        return self.certificates.get(alias)

    # 共享记录
    def _etag(self, entity_id: str) -> str:
        return f'"{self.versions[entity_id]}"'

    async def get_entity(self, entity_id: str) -> Tuple[Dict[str, Any], str]:
        if entity_id not in self.entities:
            raise self._error(ErrorKind.NOT_FOUND, "entity not found", 404)
        return copy.deepcopy(self.entities[entity_id]), self._etag(entity_id)

    async def put_entity(
        self, entity_id: str, document: Dict[str, Any], etag: str, token=None
    ) -> int:
        if entity_id not in self.entities:
            raise self._error(ErrorKind.NOT_FOUND, "entity not found", 404)

        if self.concurrent_writers:
            # 其他控制器抢先写入
            ip = self.concurrent_writers.pop(0)
            current = extract_virtual_ips(self.entities[entity_id])
            self.entities[entity_id] = with_virtual_ips(
                self.entities[entity_id], current + [ip]
            )
            self.versions[entity_id] += 1

        if etag != self._etag(entity_id):
            raise self._error(
                ErrorKind.PRECONDITION_FAILED, "ETag mismatch", 412
            )

        self.entities[entity_id] = copy.deepcopy(document)
        self.versions[entity_id] += 1
        self.writes.append(("put_entity", entity_id))
        return 200
