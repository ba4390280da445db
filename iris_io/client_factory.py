"""
SQL客户端工厂模块

根据后端类型选择合适的SQL客户端实现（原生SDK或ODBC）
"""

import logging
from typing import Dict, List

from .config import BACKEND_NATIVE, BACKEND_ODBC, SUPPORTED_BACKENDS
from .exceptions import ConfigurationError
from .native_client import NativeSQLClient
from .odbc_client import OdbcSQLClient
from .sql_client import SQLClient


class SQLClientFactory:
    """SQL客户端工厂类"""

    @staticmethod
    def create_client(backend_kind: str, handle) -> SQLClient:
        """
        根据后端类型创建SQL客户端

        Args:
            backend_kind: 后端类型 native / odbc
            handle: 原生SDK的 IRIS 对象，或已打开的ODBC连接

        Returns:
            SQL客户端对象

        Raises:
            ConfigurationError: 不支持的后端类型
        """
        logger = logging.getLogger(__name__)
        kind = (backend_kind or '').lower()

        if kind == BACKEND_ODBC:
            logger.info("创建ODBC SQL客户端")
            return OdbcSQLClient(handle)
        elif kind == BACKEND_NATIVE:
            logger.info("创建原生SDK SQL客户端")
            return NativeSQLClient(handle)
        else:
            raise ConfigurationError(
                f"不支持的后端类型: {backend_kind}。支持的类型: {', '.join(SUPPORTED_BACKENDS)}"
            )

    @staticmethod
    def get_supported_types() -> List[str]:
        """
        获取支持的后端类型列表

        Returns:
            支持的后端类型列表
        """
        return list(SUPPORTED_BACKENDS)

    @staticmethod
    def validate_config(connection: Dict) -> Dict:
        """
        验证连接配置

        Args:
            connection: 单个连接的配置字典

        Returns:
            验证结果字典 {'valid': bool, 'message': str, 'backend_kind': str}
        """
        backend_kind = str(connection.get('backend_kind', BACKEND_ODBC)).lower()

        if backend_kind not in SQLClientFactory.get_supported_types():
            return {
                'valid': False,
                'message': f"不支持的后端类型: {backend_kind}。支持的类型: {', '.join(SQLClientFactory.get_supported_types())}",
                'backend_kind': backend_kind
            }

        port_field = 'native_port' if backend_kind == BACKEND_NATIVE else 'odbc_port'
        required_fields = ['host', 'namespace', 'user']

        missing_fields = [field for field in required_fields if not connection.get(field)]
        if connection.get(port_field) is None and connection.get('port') is None:
            missing_fields.append(port_field)

        if missing_fields:
            return {
                'valid': False,
                'message': f"{backend_kind} 连接配置缺少必需字段: {', '.join(missing_fields)}",
                'backend_kind': backend_kind
            }

        try:
            int(connection.get(port_field, connection.get('port')))
        except (TypeError, ValueError):
            return {
                'valid': False,
                'message': f"{port_field} 必须是整数",
                'backend_kind': backend_kind
            }

        return {
            'valid': True,
            'message': f"{backend_kind} 连接配置验证通过",
            'backend_kind': backend_kind
        }
