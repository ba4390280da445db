"""
SQL客户端抽象模块

定义两种后端共同遵守的接口，以及宿主值到后端参数表示的转换
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .sql_types import SQLResult


def normalize_param(value: Any, binary_as_text: bool = True) -> Any:
    """
    将单个宿主值转换为后端参数

    Args:
        value: 任意宿主值
        binary_as_text: 二进制值是否转换为逐字节对应的字符串，ODBC 后端直接绑定 bytes

    Returns:
        后端可接受的字符串，None 保持为 None，binary_as_text 为 False 时二进制值为 bytes
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    # bool 是 int 的子类，必须先判断
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        if not binary_as_text:
            return bytes(value)
        return bytes(value).decode('latin-1')
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.strftime('%Y-%m-%d %H:%M:%S')
    if isinstance(value, date):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, time):
        return value.strftime('%H:%M:%S')
    return str(value)


def normalize_params(params: Optional[Sequence[Any]], binary_as_text: bool = True) -> List[Any]:
    """批量转换位置参数"""
    if not params:
        return []
    return [normalize_param(value, binary_as_text) for value in params]


class SQLClient(ABC):
    """
    SQL客户端接口

    调用方只依赖这三个操作，不接触任何后端驱动类型
    """

    backend_name = "abstract"

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__)

    @abstractmethod
    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        执行查询并返回行列表

        Args:
            sql: SQL语句，使用 ? 作为位置占位符
            params: 位置参数

        Returns:
            行字典列表
        """

    @abstractmethod
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """
        执行非查询语句

        Returns:
            影响行数
        """

    @abstractmethod
    def query_with_metadata(self, sql: str, params: Optional[Sequence[Any]] = None) -> SQLResult:
        """执行语句并返回包含列元数据的完整结果"""

    def __repr__(self):
        return f"<{self.__class__.__name__} backend={self.backend_name}>"
