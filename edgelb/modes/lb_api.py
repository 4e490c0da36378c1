# -*- coding: utf-8 -*-
"""
负载均衡相关API
"""

from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from edgelb.core.cancellation import CancelToken
from edgelb.core.error_handler import create_error_handler
from edgelb.core.errors import GatewayError
from edgelb.models import OneArm, PortDetails


class PortRequest(BaseModel):
    """端口请求模型"""

    port_suffix: str = Field(..., description="端口名称后缀，如 http")
    external_port: int = Field(..., ge=1, le=65535, description="对外端口")
    internal_port: int = Field(..., ge=1, le=65535, description="后端成员端口")
    protocol: str = Field("HTTP", description="HTTP 或 HTTPS")
    use_ssl: bool = Field(False, description="是否启用SSL")
    cert_alias: str = Field("", description="证书别名，为空时使用配置或 <集群ID>-cert")


class CreateRequest(BaseModel):
    """创建负载均衡请求模型"""

    name_prefix: str = Field(..., description="虚拟服务名称前缀")
    pool_name_prefix: str = Field(..., description="池名称前缀")
    member_ips: List[str] = Field(default_factory=list, description="后端成员地址")
    ports: List[PortRequest] = Field(..., description="监听端口列表")
    owner_tag: Optional[str] = Field(None, description="集群标识，默认使用配置的集群ID")


class DeleteRequest(BaseModel):
    """删除负载均衡请求模型"""

    name_prefix: str = Field(..., description="虚拟服务名称前缀")
    pool_name_prefix: str = Field(..., description="池名称前缀")
    ports: List[PortRequest] = Field(..., description="监听端口列表")
    owner_tag: Optional[str] = Field(None, description="集群标识，默认使用配置的集群ID")


class GetRequest(BaseModel):
    """查询负载均衡请求模型"""

    virtual_service_name: str = Field(..., description="虚拟服务名称")


class UpdateRequest(BaseModel):
    """更新负载均衡请求模型"""

    pool_name: str = Field(..., description="池名称")
    virtual_service_name: str = Field(..., description="虚拟服务名称")
    member_ips: List[str] = Field(default_factory=list, description="后端成员地址")
    internal_port: int = Field(..., ge=1, le=65535, description="后端成员端口")
    external_port: int = Field(..., ge=1, le=65535, description="对外端口")


def create_lb_router(server_mode_instance) -> APIRouter:
    """创建负载均衡API路由"""
    router = APIRouter(prefix="/loadbalancer", tags=["Load Balancer"])
    settings = server_mode_instance.settings

    def owner_tag_of(owner_tag: Optional[str]) -> str:
        return settings.cluster_id if owner_tag is None else owner_tag

    def port_details_of(ports: List[PortRequest]) -> List[PortDetails]:
        return [
            PortDetails(
                port_suffix=port.port_suffix,
                external_port=port.external_port,
                internal_port=port.internal_port,
                protocol=port.protocol,
                use_ssl=port.use_ssl,
                cert_alias=port.cert_alias or settings.loadbalancer.certificate_alias,
            )
            for port in ports
        ]

    def one_arm() -> Optional[OneArm]:
        return settings.loadbalancer.one_arm()

    def new_token() -> CancelToken:
        return CancelToken(timeout=settings.retry.request_timeout)

    @router.post("/create")
    async def create_load_balancer(request: CreateRequest):
        """创建（或继续创建）负载均衡，返回外部地址"""
        error_handler = create_error_handler(server_mode_instance.logger)
        if not request.ports:
            raise error_handler.handle_validation_error(
                "ports 不能为空", resource_type="load_balancer", operation="create"
            )

        try:
            manager = await server_mode_instance.get_gateway_manager()
            external_ip = await manager.create_load_balancer(
                request.name_prefix,
                request.pool_name_prefix,
                request.member_ips,
                port_details_of(request.ports),
                one_arm(),
                owner_tag_of(request.owner_tag),
                token=new_token(),
            )
        except GatewayError as e:
            raise error_handler.handle_gateway_exception(
                e, operation="create", resource_name=request.name_prefix
            )

        return {
            "code": 200,
            "data": {"name_prefix": request.name_prefix, "external_ip": external_ip},
        }

    @router.post("/get")
    async def get_load_balancer(request: GetRequest):
        """查询负载均衡外部地址，不存在时为空字符串"""
        error_handler = create_error_handler(server_mode_instance.logger)
        try:
            manager = await server_mode_instance.get_gateway_manager()
            external_ip = await manager.get_load_balancer(
                request.virtual_service_name, one_arm()
            )
        except GatewayError as e:
            raise error_handler.handle_gateway_exception(
                e, operation="get", resource_name=request.virtual_service_name
            )

        return {
            "code": 200,
            "data": {
                "virtual_service_name": request.virtual_service_name,
                "external_ip": external_ip,
                "exists": bool(external_ip),
            },
        }

    @router.post("/update")
    async def update_load_balancer(request: UpdateRequest):
        """更新池成员、端口及虚拟服务外部端口"""
        error_handler = create_error_handler(server_mode_instance.logger)
        try:
            manager = await server_mode_instance.get_gateway_manager()
            await manager.update_load_balancer(
                request.pool_name,
                request.virtual_service_name,
                request.member_ips,
                request.internal_port,
                request.external_port,
                one_arm(),
                token=new_token(),
            )
        except GatewayError as e:
            raise error_handler.handle_gateway_exception(
                e, operation="update", resource_name=request.virtual_service_name
            )

        return {
            "code": 200,
            "data": {
                "virtual_service_name": request.virtual_service_name,
                "external_port": request.external_port,
            },
        }

    @router.post("/delete")
    async def delete_load_balancer(request: DeleteRequest):
        """删除负载均衡，可重复调用"""
        error_handler = create_error_handler(server_mode_instance.logger)
        try:
            manager = await server_mode_instance.get_gateway_manager()
            await manager.delete_load_balancer(
                request.name_prefix,
                request.pool_name_prefix,
                port_details_of(request.ports),
                one_arm(),
                owner_tag_of(request.owner_tag),
                token=new_token(),
            )
        except GatewayError as e:
            raise error_handler.handle_gateway_exception(
                e, operation="delete", resource_name=request.name_prefix
            )

        return {"code": 200, "data": {"name_prefix": request.name_prefix}}

    @router.get("/virtual-ips")
    async def list_virtual_ips(
        owner_tag: Optional[str] = Query(None, description="集群标识")
    ):
        """读取集群共享记录中的虚拟IP列表"""
        error_handler = create_error_handler(server_mode_instance.logger)
        tag = owner_tag_of(owner_tag)
        if not tag:
            raise error_handler.handle_validation_error(
                "未指定集群标识", resource_type="rde", operation="get"
            )

        try:
            manager = await server_mode_instance.get_gateway_manager()
            virtual_ips = await manager.get_virtual_ips(tag)
        except GatewayError as e:
            raise error_handler.handle_gateway_exception(
                e, operation="get", resource_name=tag
            )

        return {
            "code": 200,
            "data": {
                "owner_tag": tag,
                "virtual_ips": virtual_ips,
                "count": len(virtual_ips),
            },
        }

    return router
