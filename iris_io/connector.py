"""
后端连接模块

负责打开和关闭单个逻辑连接的底层句柄，并向上层提供SQL客户端
"""

import logging
from typing import Optional

from .client_factory import SQLClientFactory
from .config import BACKEND_NATIVE, BACKEND_ODBC, DEFAULT_ODBC_DRIVER, PASSWORD_PLACEHOLDER, ConnectionConfig
from .exceptions import BackendConnectionError
from .sql_client import SQLClient


def build_odbc_connection_string(config: ConnectionConfig, driver: str = DEFAULT_ODBC_DRIVER,
                                 redact: bool = False) -> str:
    """
    组装ODBC连接字符串

    Args:
        config: 连接配置
        driver: ODBC驱动名称
        redact: 是否隐藏密码

    Returns:
        连接字符串
    """
    password = PASSWORD_PLACEHOLDER if redact else config.password
    return (
        f"DRIVER={{{driver}}};"
        f"SERVER={config.host};"
        f"PORT={config.odbc_port};"
        f"DATABASE={config.namespace};"
        f"UID={config.user};"
        f"PWD={password}"
    )


class IrisConnector:
    """单个逻辑连接"""

    def __init__(self, config: ConnectionConfig, odbc_driver: str = DEFAULT_ODBC_DRIVER,
                 connect_timeout: int = 30):
        """
        初始化连接对象，此时不会打开任何句柄

        Args:
            config: 连接配置
            odbc_driver: ODBC驱动名称，仅ODBC后端使用
            connect_timeout: 连接超时（秒）
        """
        self.config = config
        self.odbc_driver = odbc_driver
        self.connect_timeout = connect_timeout
        self.logger = logging.getLogger(__name__)

        self._connection = None
        self._sql_client: Optional[SQLClient] = None

    @property
    def backend_kind(self) -> str:
        return self.config.backend_kind

    @property
    def sql_client(self) -> SQLClient:
        if self._sql_client is None:
            raise BackendConnectionError("连接尚未建立", backend=self.backend_kind)
        return self._sql_client

    def connect(self):
        """
        打开底层连接并创建SQL客户端

        Raises:
            BackendConnectionError: 连接失败，已打开的部分句柄会先被关闭
        """
        if self.is_connected():
            return

        self.logger.info(f"正在连接: {self.config.redacted()}")
        try:
            if self.backend_kind == BACKEND_ODBC:
                self._connect_odbc()
            else:
                self._connect_native()
        except Exception as e:
            self._close_handle()
            self.logger.error(f"[{self.backend_kind}] 连接失败 {self.config.host}:{self.config.port_for()}: {str(e)}")
            if isinstance(e, BackendConnectionError):
                raise
            raise BackendConnectionError(
                f"[{self.backend_kind}] 无法连接到 {self.config.host}:{self.config.port_for()}/{self.config.namespace}: {str(e)}",
                backend=self.backend_kind
            ) from e

        self.logger.info(f"[{self.backend_kind}] 已连接到 {self.config.host}:{self.config.port_for()}/{self.config.namespace}")

    def _connect_odbc(self):
        import pyodbc

        self.logger.debug(f"ODBC连接字符串: {build_odbc_connection_string(self.config, self.odbc_driver, redact=True)}")
        self._connection = pyodbc.connect(
            build_odbc_connection_string(self.config, self.odbc_driver),
            autocommit=True,
            timeout=self.connect_timeout
        )
        self._sql_client = SQLClientFactory.create_client(BACKEND_ODBC, self._connection)

    def _connect_native(self):
        import iris

        self._connection = iris.connect(
            self.config.host,
            self.config.native_port,
            self.config.namespace,
            self.config.user,
            self.config.password
        )
        handle = iris.createIRIS(self._connection)
        self._sql_client = SQLClientFactory.create_client(BACKEND_NATIVE, handle)

    def _close_handle(self):
        connection, self._connection = self._connection, None
        self._sql_client = None
        if connection is None:
            return
        try:
            connection.close()
        except Exception as e:
            self.logger.warning(f"关闭连接句柄失败: {str(e)}")

    def is_connected(self) -> bool:
        return self._connection is not None and self._sql_client is not None

    def test(self) -> bool:
        """
        测试连接是否可用

        Returns:
            执行 SELECT 1 成功返回 True
        """
        if not self.is_connected():
            return False
        try:
            rows = self.sql_client.query("SELECT 1 AS ok")
            return bool(rows)
        except Exception as e:
            self.logger.error(f"[{self.backend_kind}] 连接测试失败: {str(e)}")
            return False

    def close(self):
        """关闭连接"""
        if self._connection is not None:
            self._close_handle()
            self.logger.info(f"[{self.backend_kind}] 连接已关闭: {self.config.host}/{self.config.namespace}")

    def __str__(self):
        state = "已连接" if self.is_connected() else "未连接"
        return f"IrisConnector({self.backend_kind}, {self.config.host}:{self.config.port_for()}/{self.config.namespace}, {state})"
