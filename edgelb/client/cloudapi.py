# -*- coding: utf-8 -*-
"""
CloudAPI 客户端
基于 httpx 的网关客户端实现，负责请求构造、分页、异步任务轮询和错误分类
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from edgelb.client.base import GatewayClient
from edgelb.core.cancellation import CancelToken, ensure_token
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import (
    EntityRef,
    IpRange,
    LoadBalancerPool,
    NatRule,
    VirtualService,
)

PAGE_SIZE = 128

# 任务终止状态
TASK_FAILED_STATES = ("error", "aborted", "canceled")


def classify_error(status_code: int, text: str) -> ErrorKind:
    """根据HTTP状态码和响应内容判断错误类型"""
    if "BUSY_ENTITY" in text:
        return ErrorKind.PENDING
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 412:
        return ErrorKind.PRECONDITION_FAILED
    if (
        status_code == 409
        or "DUPLICATE_NAME" in text
        or "already exists" in text.lower()
    ):
        return ErrorKind.ALREADY_EXISTS
    return ErrorKind.BACKEND


def _ref(data: Optional[Dict[str, Any]]) -> EntityRef:
    data = data or {}
    return EntityRef(name=data.get("name") or "", id=data.get("id") or "")


def _ref_payload(ref: EntityRef) -> Dict[str, str]:
    return {"name": ref.name, "id": ref.id}


def _port(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


class CloudApiClient(GatewayClient):
    """CloudAPI 1.0.0 客户端"""

    def __init__(
        self,
        host: str,
        token: str,
        api_version: str = "36.0",
        insecure: bool = False,
        timeout: float = 60.0,
        task_poll_interval: float = 1.0,
        task_poll_attempts: int = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        初始化客户端

        Args:
            host: 站点地址，如 https://vcd.example.com
            token: 已签发的Bearer令牌
            api_version: API版本
            insecure: 是否跳过证书校验
            timeout: 单次请求超时（秒）
            task_poll_interval: 异步任务轮询间隔（秒）
            task_poll_attempts: 异步任务最大轮询次数
            transport: 自定义传输层，测试时注入
        """
        self.base_url = f"{host.rstrip('/')}/cloudapi/1.0.0"
        self.task_poll_interval = task_poll_interval
        self.task_poll_attempts = task_poll_attempts
        self.logger = logging.getLogger("edgelb.CloudApiClient")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": f"application/json;version={api_version}",
                "Authorization": f"Bearer {token}",
            },
            verify=not insecure,
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    # ------------------------------------------------------------------
    # 请求辅助
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        resource_type: Optional[str] = None,
        resource_name: Optional[str] = None,
        token: Optional[CancelToken] = None,
        **kwargs,
    ) -> httpx.Response:
        """发送请求，检查状态码，并等待异步任务完成"""
        if token is not None:
            token.raise_if_cancelled(operation)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise GatewayError(
                ErrorKind.BACKEND,
                f"{operation} 请求失败: {e}",
                resource_type=resource_type,
                operation=operation,
                resource_name=resource_name,
            ) from e

        self._check_response(response, operation, resource_type, resource_name)

        if response.status_code == 202:
            await self._wait_for_task(
                response, operation, resource_type, resource_name, token
            )

        return response

    def _check_response(
        self,
        response: httpx.Response,
        operation: str,
        resource_type: Optional[str],
        resource_name: Optional[str],
    ):
        if response.status_code < 400:
            return

        text = response.text
        kind = classify_error(response.status_code, text)
        message = self._error_message(response)

        self.logger.debug(
            "[%s]%s 失败 (状态码: %d): %s",
            resource_type or "资源",
            operation,
            response.status_code,
            message,
        )
        raise GatewayError(
            kind,
            f"{operation} 失败 (状态码 {response.status_code}): {message}",
            resource_type=resource_type,
            operation=operation,
            resource_name=resource_name,
            status_code=response.status_code,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict):
            return data.get("message") or response.text
        return response.text

    async def _wait_for_task(
        self,
        response: httpx.Response,
        operation: str,
        resource_type: Optional[str],
        resource_name: Optional[str],
        token: Optional[CancelToken] = None,
    ):
        """
        轮询 Location 指向的任务直到成功或失败

        每次轮询前检查取消令牌，轮询间隔通过令牌等待，取消或超时立即返回 CANCELLED
        """
        location = response.headers.get("Location")
        if not location:
            return
        token = ensure_token(token)

        for _ in range(self.task_poll_attempts):
            task_response = await self._request(
                "GET",
                location,
                f"{operation} 任务查询",
                resource_type,
                resource_name,
                token=token,
            )
            task = task_response.json()
            status = (task.get("status") or "").lower()

            if status == "success":
                return
            if status in TASK_FAILED_STATES:
                error = task.get("error") or {}
                message = error.get("message") or task.get("details") or status
                raise GatewayError(
                    classify_error(400, str(error) + str(message)),
                    f"{operation} 任务失败: {message}",
                    resource_type=resource_type,
                    operation=operation,
                    resource_name=resource_name,
                )

            await token.sleep(self.task_poll_interval, f"{operation} 任务等待")

        raise GatewayError(
            ErrorKind.BACKEND,
            f"{operation} 任务在 {self.task_poll_attempts} 次轮询后仍未完成",
            resource_type=resource_type,
            operation=operation,
            resource_name=resource_name,
        )

    async def _list_all(
        self,
        path: str,
        operation: str,
        resource_type: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """按页读取列表接口的全部结果"""
        values: List[Dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"page": page, "pageSize": PAGE_SIZE})
            response = await self._request(
                "GET", path, operation, resource_type, params=query
            )
            data = response.json()
            values.extend(data.get("values") or [])

            page_count = data.get("pageCount") or 1
            if page >= page_count:
                return values
            page += 1

    # ------------------------------------------------------------------
    # 网关
    # ------------------------------------------------------------------

    async def get_gateway_for_network(self, network_name: str) -> Optional[EntityRef]:
        networks = await self._list_all(
            "/orgVdcNetworks",
            "查询VDC网络",
            "network",
            params={"filter": f"name=={network_name}"},
        )
        if not networks:
            return None

        connection = networks[0].get("connection") or {}
        router_ref = connection.get("routerRef")
        if not router_ref:
            return None
        return _ref(router_ref)

    async def get_gateway_ip_ranges(self, gateway_id: str) -> List[IpRange]:
        response = await self._request(
            "GET", f"/edgeGateways/{gateway_id}", "查询边缘网关", "gateway"
        )
        data = response.json()

        ranges = []
        for uplink in data.get("edgeGatewayUplinks") or []:
            for subnet in (uplink.get("subnets") or {}).get("values") or []:
                for ip_range in (subnet.get("ipRanges") or {}).get("values") or []:
                    ranges.append(
                        IpRange(
                            start_address=ip_range["startAddress"],
                            end_address=ip_range["endAddress"],
                        )
                    )
        return ranges

    # ------------------------------------------------------------------
    # NAT规则
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_nat_rule(data: Dict[str, Any]) -> NatRule:
        return NatRule(
            id=data.get("id"),
            name=data["name"],
            rule_type=data.get("type") or data.get("ruleType") or "DNAT",
            external_address=data.get("externalAddresses") or "",
            internal_address=data.get("internalAddresses") or "",
            external_port=_port(data.get("dnatExternalPort")),
            internal_port=_port(data.get("internalPort")),
            enabled=data.get("enabled", True),
        )

    @staticmethod
    def _nat_rule_payload(rule: NatRule) -> Dict[str, Any]:
        payload = {
            "name": rule.name,
            "type": rule.rule_type,
            "enabled": rule.enabled,
            "externalAddresses": rule.external_address,
            "internalAddresses": rule.internal_address,
            "logging": False,
        }
        if rule.external_port is not None:
            payload["dnatExternalPort"] = str(rule.external_port)
        if rule.internal_port is not None:
            payload["internalPort"] = str(rule.internal_port)
        if rule.id:
            payload["id"] = rule.id
        return payload

    async def list_nat_rules(self, gateway_id: str) -> List[NatRule]:
        rules = await self._list_all(
            f"/edgeGateways/{gateway_id}/nat/rules", "查询NAT规则", "nat_rule"
        )
        return [self._parse_nat_rule(rule) for rule in rules]

    async def create_nat_rule(
        self, gateway_id: str, rule: NatRule, token: Optional[CancelToken] = None
    ):
        await self._request(
            "POST",
            f"/edgeGateways/{gateway_id}/nat/rules",
            "创建NAT规则",
            "nat_rule",
            rule.name,
            json=self._nat_rule_payload(rule),
            token=token,
        )

    async def update_nat_rule(
        self, gateway_id: str, rule: NatRule, token: Optional[CancelToken] = None
    ):
        await self._request(
            "PUT",
            f"/edgeGateways/{gateway_id}/nat/rules/{rule.id}",
            "更新NAT规则",
            "nat_rule",
            rule.name,
            json=self._nat_rule_payload(rule),
            token=token,
        )

    async def delete_nat_rule(
        self, gateway_id: str, rule_id: str, token: Optional[CancelToken] = None
    ):
        await self._request(
            "DELETE",
            f"/edgeGateways/{gateway_id}/nat/rules/{rule_id}",
            "删除NAT规则",
            "nat_rule",
            token=token,
        )

    # ------------------------------------------------------------------
    # 负载均衡池
    # ------------------------------------------------------------------

    @staticmethod
    def _pool_payload(pool: LoadBalancerPool) -> Dict[str, Any]:
        payload = {
            "name": pool.name,
            "enabled": pool.enabled,
            "gatewayRef": _ref_payload(pool.gateway_ref),
            "defaultPort": pool.member_port,
            "algorithm": "ROUND_ROBIN",
            "members": [
                {
                    "ipAddress": ip,
                    "port": pool.member_port,
                    "ratio": 1,
                    "enabled": True,
                }
                for ip in pool.member_ips
            ],
        }
        if pool.id:
            payload["id"] = pool.id
        return payload

    async def find_pool(self, gateway_id: str, name: str) -> Optional[LoadBalancerPool]:
        summaries = await self._list_all(
            f"/edgeGateways/{gateway_id}/loadBalancer/poolSummaries",
            "查询负载均衡池",
            "pool",
            params={"filter": f"name=={name}"},
        )
        if not summaries:
            return None

        try:
            response = await self._request(
                "GET",
                f"/loadBalancer/pools/{summaries[0]['id']}",
                "读取负载均衡池",
                "pool",
                name,
            )
        except GatewayError as e:
            # 摘要与详情之间被并发删除
            if e.kind is ErrorKind.NOT_FOUND:
                return None
            raise

        data = response.json()
        members = data.get("members") or []
        member_port = data.get("defaultPort")
        if member_port is None and members:
            member_port = members[0].get("port")

        return LoadBalancerPool(
            id=data.get("id"),
            name=data["name"],
            gateway_ref=_ref(data.get("gatewayRef")),
            member_ips=[member["ipAddress"] for member in members],
            member_port=member_port or 0,
            enabled=data.get("enabled", True),
        )

    async def create_pool(
        self, pool: LoadBalancerPool, token: Optional[CancelToken] = None
    ):
        await self._request(
            "POST",
            "/loadBalancer/pools",
            "创建负载均衡池",
            "pool",
            pool.name,
            json=self._pool_payload(pool),
            token=token,
        )

    async def update_pool(
        self, pool: LoadBalancerPool, token: Optional[CancelToken] = None
    ):
        await self._request(
            "PUT",
            f"/loadBalancer/pools/{pool.id}",
            "更新负载均衡池",
            "pool",
            pool.name,
            json=self._pool_payload(pool),
            token=token,
        )

    async def delete_pool(self, pool_id: str, token: Optional[CancelToken] = None):
        await self._request(
            "DELETE",
            f"/loadBalancer/pools/{pool_id}",
            "删除负载均衡池",
            "pool",
            token=token,
        )

    # ------------------------------------------------------------------
    # 服务引擎组
    # ------------------------------------------------------------------

    async def list_seg_assignments(self, gateway_id: str) -> List[EntityRef]:
        assignments = await self._list_all(
            "/loadBalancer/serviceEngineGroups/assignments",
            "查询服务引擎组",
            "service_engine_group",
            params={"filter": f"gatewayRef.id=={gateway_id}"},
        )
        return [
            _ref(assignment.get("serviceEngineGroupRef"))
            for assignment in assignments
            if assignment.get("serviceEngineGroupRef")
        ]

    # ------------------------------------------------------------------
    # 虚拟服务
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_virtual_service(data: Dict[str, Any]) -> VirtualService:
        service_ports = data.get("servicePorts") or [{}]
        profile = data.get("applicationProfile") or {}
        certificate_ref = data.get("certificateRef")

        return VirtualService(
            id=data.get("id"),
            name=data["name"],
            gateway_ref=_ref(data.get("gatewayRef")),
            pool_ref=_ref(data.get("loadBalancerPoolRef")),
            seg_ref=_ref(data.get("serviceEngineGroupRef")),
            virtual_ip=data.get("virtualIpAddress") or "",
            port=_port(service_ports[0].get("portStart")) or 0,
            protocol=profile.get("type") or "HTTP",
            use_ssl=bool(service_ports[0].get("sslEnabled", False)),
            certificate_ref=_ref(certificate_ref) if certificate_ref else None,
            health_status=data.get("healthStatus") or "UNKNOWN",
            description=data.get("description") or "",
        )

    @staticmethod
    def _virtual_service_payload(virtual_service: VirtualService) -> Dict[str, Any]:
        payload = {
            "name": virtual_service.name,
            "description": virtual_service.description,
            "enabled": True,
            "gatewayRef": _ref_payload(virtual_service.gateway_ref),
            "loadBalancerPoolRef": _ref_payload(virtual_service.pool_ref),
            "serviceEngineGroupRef": _ref_payload(virtual_service.seg_ref),
            "virtualIpAddress": virtual_service.virtual_ip,
            "servicePorts": [
                {
                    "portStart": virtual_service.port,
                    "sslEnabled": virtual_service.use_ssl,
                }
            ],
            "applicationProfile": {
                "type": virtual_service.protocol,
                "systemDefined": True,
            },
        }
        if virtual_service.certificate_ref:
            payload["certificateRef"] = _ref_payload(virtual_service.certificate_ref)
        if virtual_service.id:
            payload["id"] = virtual_service.id
        return payload

    async def _virtual_service_summaries(
        self, gateway_id: str, name: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"filter": f"name=={name}"} if name is not None else None
        return await self._list_all(
            f"/edgeGateways/{gateway_id}/loadBalancer/virtualServiceSummaries",
            "查询虚拟服务",
            "virtual_service",
            params=params,
        )

    async def list_virtual_services(self, gateway_id: str) -> List[VirtualService]:
        summaries = await self._virtual_service_summaries(gateway_id)
        return [self._parse_virtual_service(summary) for summary in summaries]

    async def find_virtual_service(
        self, gateway_id: str, name: str
    ) -> Optional[VirtualService]:
        summaries = await self._virtual_service_summaries(gateway_id, name)
        for summary in summaries:
            if summary.get("name") == name:
                return self._parse_virtual_service(summary)
        return None

    async def create_virtual_service(
        self, virtual_service: VirtualService, token: Optional[CancelToken] = None
    ):
        await self._request(
            "POST",
            "/loadBalancer/virtualServices",
            "创建虚拟服务",
            "virtual_service",
            virtual_service.name,
            json=self._virtual_service_payload(virtual_service),
            token=token,
        )

    async def update_virtual_service(
        self, virtual_service: VirtualService, token: Optional[CancelToken] = None
    ):
        await self._request(
            "PUT",
            f"/loadBalancer/virtualServices/{virtual_service.id}",
            "更新虚拟服务",
            "virtual_service",
            virtual_service.name,
            json=self._virtual_service_payload(virtual_service),
            token=token,
        )

    async def delete_virtual_service(
        self, virtual_service_id: str, token: Optional[CancelToken] = None
    ):
        await self._request(
            "DELETE",
            f"/loadBalancer/virtualServices/{virtual_service_id}",
            "删除虚拟服务",
            "virtual_service",
            token=token,
        )

    # ------------------------------------------------------------------
    # 证书
    # ------------------------------------------------------------------

    async def get_certificate(self, alias: str) -> Optional[EntityRef]:
        certificates = await self._list_all(
            "/ssl/certificateLibrary",
            "查询证书",
            "certificate",
            params={"filter": f"alias=={alias}"},
        )
        if not certificates:
            return None
        return EntityRef(name=certificates[0]["alias"], id=certificates[0]["id"])

    # ------------------------------------------------------------------
    # 共享记录
    # ------------------------------------------------------------------

    async def get_entity(self, entity_id: str) -> Tuple[Dict[str, Any], str]:
        response = await self._request(
            "GET", f"/entities/{entity_id}", "读取共享记录", "entity", entity_id
        )
        return response.json(), response.headers.get("ETag", "")

    async def put_entity(
        self,
        entity_id: str,
        document: Dict[str, Any],
        etag: str,
        token: Optional[CancelToken] = None,
    ) -> int:
        response = await self._request(
            "PUT",
            f"/entities/{entity_id}",
            "更新共享记录",
            "entity",
            entity_id,
            json=document,
            headers={"If-Match": etag},
            token=token,
        )
        return response.status_code
