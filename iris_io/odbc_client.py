"""
ODBC SQL客户端模块

通过 pyodbc 连接执行参数化语句，并解析驱动返回的诊断记录
"""

import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from datetime import time as time_type
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import SQLClientError
from .sql_client import SQLClient, normalize_params
from .sql_types import CanonicalType, ColumnMeta, SQLResult, StatementKind, classify_statement

# 驱动消息中的单条诊断记录: [SQLSTATE] 文本 (原生错误码)
_DIAGNOSTIC_PATTERN = re.compile(r"\[(?P<state>[0-9A-Z]{5})\]\s*(?P<message>.*?)\s*\((?P<code>-?\d+)\)")

# cursor.description 中的 Python 类型到规范类型
_PY_TYPE_TO_CANONICAL = {
    bool: CanonicalType.BIT,
    int: CanonicalType.INTEGER,
    float: CanonicalType.DOUBLE,
    Decimal: CanonicalType.DECIMAL,
    str: CanonicalType.VARCHAR,
    bytes: CanonicalType.BINARY,
    bytearray: CanonicalType.BINARY,
    date: CanonicalType.DATE,
    datetime: CanonicalType.TIMESTAMP,
    time_type: CanonicalType.TIME,
}


@dataclass
class OdbcDiagnostic:
    """ODBC 诊断记录"""
    state: str
    code: int
    message: str


def parse_odbc_diagnostics(exc: Exception) -> List[OdbcDiagnostic]:
    """
    从驱动异常中提取诊断记录列表

    pyodbc 把多条诊断记录拼接在同一条消息里，这里逐条拆分

    Args:
        exc: 驱动抛出的异常

    Returns:
        诊断记录列表，无法解析时返回单条记录
    """
    args = getattr(exc, 'args', ())
    state = str(args[0]) if len(args) > 1 else ''
    text = str(args[1]) if len(args) > 1 else str(exc)

    diagnostics = [
        OdbcDiagnostic(state=m.group('state'), code=int(m.group('code')), message=m.group('message'))
        for m in _DIAGNOSTIC_PATTERN.finditer(text)
    ]
    if not diagnostics:
        diagnostics.append(OdbcDiagnostic(state=state, code=0, message=text))
    return diagnostics


def description_to_columns(description) -> List[ColumnMeta]:
    """将 cursor.description 转换为规范列元数据"""
    columns = []
    for name, type_code, _display_size, _internal_size, precision, scale, null_ok in description:
        data_type = _PY_TYPE_TO_CANONICAL.get(type_code, CanonicalType.UNKNOWN)
        if data_type == CanonicalType.INTEGER and precision and precision > 10:
            data_type = CanonicalType.BIGINT
        columns.append(ColumnMeta(
            name=name,
            data_type=data_type,
            nullable=bool(null_ok) if null_ok is not None else True,
            precision=precision,
            scale=scale,
        ))
    return columns


class OdbcSQLClient(SQLClient):
    """ODBC后端的SQL客户端"""

    backend_name = "odbc"

    def __init__(self, connection):
        """
        Args:
            connection: 已打开的 pyodbc 连接
        """
        super().__init__()
        if connection is None:
            raise ValueError("未提供ODBC连接")
        self.connection = connection

    def _run(self, sql: str, params: Optional[Sequence[Any]]) -> SQLResult:
        start_time = time.time()
        kind = classify_statement(sql)
        cursor = self.connection.cursor()
        try:
            bound = normalize_params(params, binary_as_text=False)
            if bound:
                cursor.execute(sql, bound)
            else:
                cursor.execute(sql)

            result = SQLResult(statement_kind=kind)
            if cursor.description:
                result.columns = description_to_columns(cursor.description)
                names = [column.name for column in result.columns]
                fetched = cursor.fetchall()
                if kind == StatementKind.SELECT:
                    result.rows = [dict(zip(names, row)) for row in fetched]
                result.affected_rows = len(fetched)
            else:
                result.affected_rows = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0

            elapsed = time.time() - start_time
            self.logger.debug(f"ODBC语句完成: 耗时 {elapsed*1000:.0f}ms, 行数 {result.affected_rows}")
            return result

        except Exception as e:
            diagnostics = parse_odbc_diagnostics(e)
            for diagnostic in diagnostics:
                self.logger.error(f"ODBC错误 [{diagnostic.state}] 代码 {diagnostic.code}: {diagnostic.message}")
            self.logger.error(f"ODBC语句执行失败: {sql[:100]}")
            raise SQLClientError(str(e), backend=self.backend_name, sql=sql, sub_errors=diagnostics) from e
        finally:
            cursor.close()

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        self.logger.debug(f"执行查询: {sql[:100]}")
        return self._run(sql, params).rows

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        self.logger.debug(f"执行语句: {sql[:100]}")
        return self._run(sql, params).affected_rows

    def query_with_metadata(self, sql: str, params: Optional[Sequence[Any]] = None) -> SQLResult:
        return self._run(sql, params)
