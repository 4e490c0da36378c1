# -*- coding: utf-8 -*-
"""
外部地址分配
从网关上行链路的已分配IP段中按升序选取第一个未被占用的地址
"""

import ipaddress
import logging
from typing import Iterator, List, Optional, Set, Union

from edgelb.client.base import GatewayClient
from edgelb.core.errors import ErrorKind, GatewayError
from edgelb.models import EntityRef, IpRange, OneArm

ADDRESS_TYPES = {4: ipaddress.IPv4Address, 6: ipaddress.IPv6Address}


class AddressAllocator:
    """外部地址分配器"""

    def __init__(self, client: GatewayClient, gateway_ref: EntityRef):
        self.client = client
        self.gateway_ref = gateway_ref
        self.logger = logging.getLogger("edgelb.AddressAllocator")

    def _error(self, kind: ErrorKind, message: str) -> GatewayError:
        return GatewayError(
            kind,
            message,
            gateway=self.gateway_ref.name,
            resource_type="ip_address",
            operation="allocate",
        )

    async def used_addresses(self, include_nat: bool = True) -> Set[str]:
        """网关上已被虚拟服务（及DNAT规则外部地址）占用的地址"""
        virtual_services = await self.client.list_virtual_services(self.gateway_ref.id)
        used = {vs.virtual_ip for vs in virtual_services if vs.virtual_ip}

        if include_nat:
            rules = await self.client.list_nat_rules(self.gateway_ref.id)
            used.update(rule.external_address for rule in rules if rule.external_address)
        return used

    async def allocate(self, subnet_cidr: str) -> str:
        """
        分配一个未被占用的外部地址

        Args:
            subnet_cidr: 限定网段，为空表示不限

        Returns:
            str: 分配到的地址

        Raises:
            GatewayError: 网段格式错误时 kind 为 INVALID_SUBNET；
                网段内无空闲地址时 kind 为 EXHAUSTED_RANGE
        """
        network = None
        if subnet_cidr:
            try:
                network = ipaddress.ip_network(subnet_cidr.strip(), strict=True)
            except ValueError as e:
                raise self._error(
                    ErrorKind.INVALID_SUBNET, f"无效的网段 [{subnet_cidr}]: {e}"
                ) from e

        ranges = await self.client.get_gateway_ip_ranges(self.gateway_ref.id)
        used = await self.used_addresses()

        for candidate in iter_candidates(ranges, network):
            if candidate not in used:
                self.logger.info(
                    "[地址分配]从网段 [%s] 分配地址 %s", subnet_cidr or "任意", candidate
                )
                return candidate

        raise self._error(
            ErrorKind.EXHAUSTED_RANGE,
            f"网关 [{self.gateway_ref.name}] 在网段 [{subnet_cidr or '任意'}] 内无空闲地址",
        )

    async def allocate_internal(self, one_arm: OneArm) -> str:
        """在单臂地址段内分配一个未被虚拟服务占用的地址"""
        try:
            start = ipaddress.ip_address(one_arm.start_ip)
            end = ipaddress.ip_address(one_arm.end_ip)
        except ValueError as e:
            raise self._error(
                ErrorKind.INVALID_SUBNET,
                f"无效的单臂地址段 [{one_arm.start_ip}-{one_arm.end_ip}]: {e}",
            ) from e
        if start.version != end.version or start > end:
            raise self._error(
                ErrorKind.INVALID_SUBNET,
                f"无效的单臂地址段 [{one_arm.start_ip}-{one_arm.end_ip}]",
            )

        used = await self.used_addresses(include_nat=False)
        address_type = ADDRESS_TYPES[start.version]
        for value in range(int(start), int(end) + 1):
            candidate = str(address_type(value))
            if candidate not in used:
                self.logger.info("[地址分配]单臂内部地址 %s", candidate)
                return candidate

        raise self._error(
            ErrorKind.EXHAUSTED_RANGE,
            f"单臂地址段 [{one_arm.start_ip}-{one_arm.end_ip}] 无空闲地址",
        )


def iter_candidates(
    ranges: List[IpRange],
    network: Optional[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]] = None,
) -> Iterator[str]:
    """
    按升序遍历候选地址

    Args:
        ranges: 网关IP段
        network: 限定网段，None表示不限

    Yields:
        str: 候选地址，多个IP段重叠时同一地址只出现一次
    """
    bounds = []
    for ip_range in ranges:
        start = ipaddress.ip_address(ip_range.start_address)
        end = ipaddress.ip_address(ip_range.end_address)
        if start.version != end.version:
            continue
        if network is not None:
            if start.version != network.version:
                continue
            start = max(start, network.network_address)
            end = min(end, network.broadcast_address)
        if start <= end:
            bounds.append((start.version, int(start), int(end)))

    bounds.sort()
    emitted = {}
    for version, start, end in bounds:
        # 跳过与前一个IP段重叠的部分
        current = max(start, emitted.get(version, start - 1) + 1)
        while current <= end:
            yield str(ADDRESS_TYPES[version](current))
            current += 1
        emitted[version] = max(emitted.get(version, end), end)
