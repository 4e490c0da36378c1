#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Edge LB Manager 主启动文件
在边缘网关上为集群服务创建、更新和删除负载均衡
"""

import argparse
import asyncio
import sys

from edgelb.core.config import Settings
from edgelb.core.errors import GatewayError
from edgelb.core.logger import setup_logger
from edgelb.modes.server_mode import ServerMode


async def main():
    """主启动函数"""
    parser = argparse.ArgumentParser(description="Edge LB Manager")
    parser.add_argument("--port", type=int, default=8000, help="服务端口 (默认: 8000)")
    parser.add_argument("--host", default="0.0.0.0", help="服务地址 (默认: 0.0.0.0)")
    parser.add_argument("--config", help="配置文件路径")

    args = parser.parse_args()

    try:
        settings = Settings(config_file=args.config)
    except GatewayError as e:
        print(f"配置加载失败: {e}", file=sys.stderr)
        sys.exit(1)

    logger = setup_logger(settings.log_level)
    logger.info(
        "启动 Edge LB Manager - 网络: %s, 集群: %s",
        settings.loadbalancer.vdc_network,
        settings.cluster_id or "未指定",
    )

    try:
        server_mode = ServerMode(settings)
        await server_mode.start(host=args.host, port=args.port)
    except KeyboardInterrupt:
        logger.info("收到停止信号，正在关闭服务...")
    except GatewayError as e:
        logger.error("启动失败: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
