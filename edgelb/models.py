# -*- coding: utf-8 -*-
"""
数据模型
网关资源（NAT规则、负载均衡池、虚拟服务）及负载均衡端口配置
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# 后端报告 UP 或 DOWN 时虚拟服务已完成配置
READY_STATES = ("UP", "DOWN")


class EntityRef(BaseModel):
    """资源引用，name由调用方指定，id由后端分配"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="资源名称")
    id: str = Field("", description="后端分配的资源ID")


class IpRange(BaseModel):
    """网关上行链路已分配的IP段"""

    start_address: str
    end_address: str


class NatRule(BaseModel):
    """DNAT规则"""

    id: Optional[str] = None
    name: str
    rule_type: str = "DNAT"
    external_address: str = Field(..., description="外部地址")
    internal_address: str = Field(..., description="内部地址")
    external_port: Optional[int] = Field(None, description="外部端口")
    internal_port: Optional[int] = Field(None, description="内部端口")
    enabled: bool = True

    def ref(self) -> EntityRef:
        return EntityRef(name=self.name, id=self.id or "")


class LoadBalancerPool(BaseModel):
    """负载均衡池，成员列表整体替换"""

    id: Optional[str] = None
    name: str
    gateway_ref: EntityRef
    member_ips: List[str] = Field(default_factory=list, description="成员地址")
    member_port: int = Field(..., description="成员端口")
    enabled: bool = True

    @property
    def member_count(self) -> int:
        return len(self.member_ips)

    def ref(self) -> EntityRef:
        return EntityRef(name=self.name, id=self.id or "")


class PoolSummary(BaseModel):
    """负载均衡池摘要"""

    ref: EntityRef
    member_count: int


class VirtualService(BaseModel):
    """虚拟服务"""

    id: Optional[str] = None
    name: str
    gateway_ref: EntityRef
    pool_ref: EntityRef
    seg_ref: EntityRef
    virtual_ip: str = Field(..., description="虚拟服务监听地址")
    port: int = Field(..., description="外部端口")
    protocol: str = Field("HTTP", description="HTTP或HTTPS")
    use_ssl: bool = False
    certificate_ref: Optional[EntityRef] = None
    health_status: str = Field("UNKNOWN", description="后端健康状态")
    description: str = ""

    @property
    def is_ready(self) -> bool:
        return (self.health_status or "").upper() in READY_STATES

    def ref(self) -> EntityRef:
        return EntityRef(name=self.name, id=self.id or "")


class PortDetails(BaseModel):
    """负载均衡的单个监听端口"""

    port_suffix: str = Field(..., description="名称后缀，如 http/https")
    external_port: int
    internal_port: int
    protocol: str = "HTTP"
    use_ssl: bool = False
    cert_alias: str = ""


class OneArm(BaseModel):
    """单臂拓扑的内部地址段"""

    start_ip: str
    end_ip: str


class RdeSnapshot(BaseModel):
    """共享记录的一次读取结果"""

    virtual_ips: List[str] = Field(default_factory=list)
    etag: str = ""
    document: Dict[str, Any] = Field(default_factory=dict)


def derive_name(prefix: str, suffix: str) -> str:
    """按前缀和端口后缀生成资源名称"""
    return f"{prefix}-{suffix}"


def dnat_rule_name(virtual_service_name: str) -> str:
    """单臂拓扑下虚拟服务对应的DNAT规则名称"""
    return f"dnat-{virtual_service_name}"


def is_valid_name(name: str) -> bool:
    """名称非空且不含控制字符"""
    if not name:
        return False
    return not any(ord(ch) < 32 or ord(ch) == 127 for ch in name)
