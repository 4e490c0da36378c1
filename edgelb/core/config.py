# -*- coding: utf-8 -*-
"""
配置管理模块
支持从环境变量、配置文件等多种方式加载配置
"""

import os
import yaml
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from pathlib import Path

from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import OneArm


@dataclass
class VcdConfig:
    """云管理平台连接配置"""

    host: str = ""
    org: str = ""
    token: Optional[str] = None  # 已签发的Bearer令牌
    api_version: str = "36.0"
    insecure: bool = False


@dataclass
class LoadBalancerConfig:
    """负载均衡配置"""

    vdc_network: str = ""
    vip_subnet: str = ""  # 为空表示不限网段
    one_arm_start_ip: str = ""
    one_arm_end_ip: str = ""
    certificate_alias: str = ""

    def one_arm(self) -> Optional[OneArm]:
        """配置了单臂地址段时返回 OneArm，否则为双臂拓扑"""
        if self.one_arm_start_ip and self.one_arm_end_ip:
            return OneArm(start_ip=self.one_arm_start_ip, end_ip=self.one_arm_end_ip)
        return None


@dataclass
class RetryConfig:
    """重试与超时配置"""

    pending_retries: int = 5
    pending_backoff_seconds: float = 2.0
    rde_update_retries: int = 10
    task_poll_interval: float = 1.0
    task_poll_attempts: int = 120
    request_timeout: float = 300


@dataclass
class Settings:
    """全局配置类"""

    # 基础配置
    app_name: str = "Edge LB Manager"
    version: str = "0.1.0"
    log_level: str = "INFO"
    cluster_id: str = ""

    # 子配置
    vcd: VcdConfig = field(default_factory=VcdConfig)
    loadbalancer: LoadBalancerConfig = field(default_factory=LoadBalancerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __init__(self, config_file: Optional[str] = None):
        """初始化配置"""
        self.app_name = "Edge LB Manager"
        self.version = "0.1.0"
        self.log_level = "INFO"
        self.cluster_id = ""
        self.vcd = VcdConfig()
        self.loadbalancer = LoadBalancerConfig()
        self.retry = RetryConfig()

        # 从环境变量加载
        self._load_from_env()

        # 从配置文件加载
        if config_file:
            self._load_from_file(config_file)

    def _load_from_env(self):
        """从环境变量加载配置"""
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        if cluster_id := os.getenv("CLUSTER_ID"):
            self.cluster_id = cluster_id

        # 平台连接
        if host := os.getenv("VCD_HOST"):
            self.vcd.host = host
        if org := os.getenv("VCD_ORG"):
            self.vcd.org = org
        if token := os.getenv("VCD_TOKEN"):
            self.vcd.token = token
        if api_version := os.getenv("VCD_API_VERSION"):
            self.vcd.api_version = api_version
        self.vcd.insecure = os.getenv("VCD_INSECURE", "false").lower() == "true"

        # 负载均衡
        if network := os.getenv("LB_VDC_NETWORK"):
            self.loadbalancer.vdc_network = network
        if subnet := os.getenv("LB_VIP_SUBNET"):
            self.loadbalancer.vip_subnet = subnet
        if start_ip := os.getenv("LB_ONE_ARM_START_IP"):
            self.loadbalancer.one_arm_start_ip = start_ip
        if end_ip := os.getenv("LB_ONE_ARM_END_IP"):
            self.loadbalancer.one_arm_end_ip = end_ip
        if alias := os.getenv("LB_CERTIFICATE_ALIAS"):
            self.loadbalancer.certificate_alias = alias

    def _load_from_file(self, config_file: str):
        """
        从配置文件加载配置

        文件不存在时忽略；无法读取或格式错误时抛出 FATAL_CONFIG
        """
        config_path = Path(config_file)
        if not config_path.exists():
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                f"加载配置文件失败: {e}",
                operation="load_config",
                resource_name=str(config_path),
            ) from e

        if config_data is not None and not isinstance(config_data, dict):
            raise GatewayError(
                ErrorKind.FATAL_CONFIG,
                f"配置文件格式错误: {config_path}",
                operation="load_config",
                resource_name=str(config_path),
            )

        # 更新配置
        self._update_from_dict(config_data)

    def _update_from_dict(self, config_data: Dict[str, Any]):
        """从字典更新配置"""
        if not config_data:
            return

        # 基础配置
        for key in ["app_name", "version", "log_level", "cluster_id"]:
            if key in config_data:
                setattr(self, key, config_data[key])

        # 平台连接
        if "vcd" in config_data:
            vcd_config = config_data["vcd"] or {}
            for key in ["host", "org", "token", "api_version", "insecure"]:
                if key in vcd_config:
                    setattr(self.vcd, key, vcd_config[key])

        # 负载均衡
        if "loadbalancer" in config_data:
            lb_config = config_data["loadbalancer"] or {}
            for key in [
                "vdc_network",
                "vip_subnet",
                "one_arm_start_ip",
                "one_arm_end_ip",
                "certificate_alias",
            ]:
                if key in lb_config:
                    setattr(self.loadbalancer, key, lb_config[key])

        # 重试配置
        if "retry" in config_data:
            retry_config = config_data["retry"] or {}
            for key in [
                "pending_retries",
                "pending_backoff_seconds",
                "rde_update_retries",
                "task_poll_interval",
                "task_poll_attempts",
                "request_timeout",
            ]:
                if key in retry_config:
                    setattr(self.retry, key, retry_config[key])
