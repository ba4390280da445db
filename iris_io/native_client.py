"""
原生SDK SQL客户端模块

通过进程内原生SDK驱动 %SQL.Statement，完成 预编译 → 绑定 → 执行 → 取数 的完整流程
"""

import logging
import time as time_module
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from .exceptions import SQLClientError
from .sql_client import SQLClient, normalize_params
from .sql_types import ColumnMeta, ODBCType, SQLResult, StatementKind, to_canonical_type

# $HOROLOG 日期的第 0 天
HOROLOG_EPOCH = date(1840, 12, 31)


def horolog_to_date(days) -> Optional[date]:
    """将 $HOROLOG 天数转换为日期"""
    if days is None or days == '':
        return None
    return HOROLOG_EPOCH + timedelta(days=int(days))


def horolog_to_time(seconds) -> Optional[time]:
    """将当天秒数转换为时间"""
    if seconds is None or seconds == '':
        return None
    seconds = int(seconds)
    return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)


def _parse_date(text: Optional[str]) -> Optional[date]:
    if not text:
        return None
    return date.fromisoformat(text[:10])


def _parse_timestamp(text: Optional[str]):
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        # 小数秒位数超出解析范围时截断到微秒
        head, _, fraction = text.partition('.')
        return datetime.fromisoformat(f"{head}.{fraction[:6].ljust(6, '0')}")


def _parse_time(text: Optional[str]) -> Optional[time]:
    if not text:
        return None
    return time.fromisoformat(text)


def _parse_decimal(text: Optional[str]) -> Optional[Decimal]:
    if text is None or text == '':
        return None
    return Decimal(text)


def _parse_int(text: Optional[str]) -> Optional[int]:
    if text is None or text == '':
        return None
    return int(text)


def build_column_getter(type_code: int, column_name: str) -> Callable[[Any], Any]:
    """
    为单列构造取值函数

    每条语句只构造一次，遍历行时不再按类型分派

    Args:
        type_code: 后端列类型码
        column_name: 列名

    Returns:
        接收结果集句柄、返回当前行该列值的函数
    """
    try:
        code = ODBCType(int(type_code))
    except (TypeError, ValueError):
        code = None

    if code in (ODBCType.INTEGER, ODBCType.SMALLINT, ODBCType.TINYINT):
        return lambda rs: rs.invokeInteger("%Get", column_name)
    if code == ODBCType.BIGINT:
        return lambda rs: _parse_int(rs.invokeString("%Get", column_name))
    if code in (ODBCType.FLOAT, ODBCType.REAL, ODBCType.DOUBLE):
        return lambda rs: rs.invokeFloat("%Get", column_name)
    if code in (ODBCType.NUMERIC, ODBCType.DECIMAL):
        return lambda rs: _parse_decimal(rs.invokeString("%Get", column_name))
    if code == ODBCType.DATE_HOROLOG:
        return lambda rs: horolog_to_date(rs.invokeString("%Get", column_name))
    if code == ODBCType.TIME_HOROLOG:
        return lambda rs: horolog_to_time(rs.invokeString("%Get", column_name))
    if code in (ODBCType.DATE, ODBCType.TYPE_DATE):
        return lambda rs: _parse_date(rs.invokeString("%Get", column_name))
    if code in (ODBCType.TIMESTAMP, ODBCType.TYPE_TIMESTAMP, ODBCType.TIMESTAMP_POSIX):
        return lambda rs: _parse_timestamp(rs.invokeString("%Get", column_name))
    if code in (ODBCType.TIME, ODBCType.TYPE_TIME):
        return lambda rs: _parse_time(rs.invokeString("%Get", column_name))
    if code in (ODBCType.BINARY, ODBCType.VARBINARY, ODBCType.LONGVARBINARY):
        return lambda rs: rs.invokeBytes("%Get", column_name)
    if code == ODBCType.BIT:
        return lambda rs: rs.invokeBoolean("%Get", column_name)
    return lambda rs: rs.invokeString("%Get", column_name)


class SQLStatement:
    """单条 %SQL.Statement 的预编译与执行"""

    def __init__(self, iris_handle, sql: str):
        """
        预编译语句

        Args:
            iris_handle: 原生SDK的 IRIS 对象
            sql: SQL语句

        Raises:
            SQLClientError: 预编译失败
        """
        self.iris = iris_handle
        self.sql = sql
        self.logger = logging.getLogger(__name__)

        self._st = iris_handle.classMethodObject("%SQL.Statement", "%New", 1)
        status = self._st.invokeString("%Prepare", sql)
        if status != "1":
            message = iris_handle.classMethodValue("%SYSTEM.Status", "GetOneErrorText", status)
            raise SQLClientError(f"语句预编译失败: {message}", backend=NativeSQLClient.backend_name, sql=sql)

    def execute(self, *args) -> SQLResult:
        """绑定参数并执行，SELECT 语句会读取全部行"""
        rs = self._st.invokeObject("%Execute", *normalize_params(args))

        kind = StatementKind.from_code(rs.getInteger("%StatementType"))
        status_code = rs.getInteger("%SQLCODE") or 0
        message = rs.getString("%Message") or None

        if message or status_code < 0:
            raise SQLClientError(message or f"SQLCODE={status_code}",
                                 backend=NativeSQLClient.backend_name,
                                 sql=self.sql, status_code=status_code)

        result = SQLResult(statement_kind=kind, status_code=status_code)
        if kind == StatementKind.INSERT:
            result.last_insert_id = rs.getString("%ROWID") or None
        if kind == StatementKind.SELECT:
            type_codes = self._fetch_metadata(rs, result)
            self._fetch_rows(rs, result, type_codes)
            result.affected_rows = len(result.rows)
        else:
            result.affected_rows = rs.getInteger("%ROWCOUNT") or 0
        return result

    def _fetch_metadata(self, rs, result: SQLResult) -> List[int]:
        """读取列元数据，返回原始类型码供构造取值函数使用"""
        metadata = rs.invokeObject("%GetMetadata")
        if metadata is None:
            return []

        columns = metadata.getObject("columns")
        column_count = metadata.getInteger("columnCount") or 0
        type_codes = []
        for i in range(column_count):
            info = columns.invokeObject("GetAt", i + 1)
            type_code = info.getInteger("ODBCType")
            type_codes.append(type_code)
            result.columns.append(ColumnMeta(
                name=info.getString("colName"),
                data_type=to_canonical_type(type_code),
                nullable=bool(info.getBoolean("isNullable")),
                is_primary_key=bool(info.getBoolean("isKeyColumn")),
                is_unique=bool(info.getBoolean("isUnique")),
                is_auto_increment=bool(info.getBoolean("isAutoIncrement")),
                precision=info.getInteger("precision"),
                scale=info.getInteger("scale"),
                table_name=info.getString("tableName") or None,
                schema_name=info.getString("schemaName") or None,
            ))
        return type_codes

    def _fetch_rows(self, rs, result: SQLResult, type_codes: List[int]):
        start_time = time_module.time()
        names = [column.name for column in result.columns]
        getters = [build_column_getter(code, name) for code, name in zip(type_codes, names)]
        accessors = list(zip(names, getters))

        rows = result.rows
        while rs.invokeBoolean("%Next"):
            rows.append({name: getter(rs) for name, getter in accessors})

        elapsed = time_module.time() - start_time
        rate = len(rows) / elapsed if elapsed > 0 else 0
        self.logger.debug(f"读取 {len(rows)} 行, 耗时 {elapsed:.3f}秒 ({rate:.0f} 行/秒)")


class NativeSQLClient(SQLClient):
    """原生SDK后端的SQL客户端"""

    backend_name = "native"

    def __init__(self, iris_handle):
        super().__init__()
        if iris_handle is None:
            raise ValueError("未提供原生SDK的 IRIS 对象")
        self.iris = iris_handle

    def _run(self, sql: str, params: Optional[Sequence[Any]]) -> SQLResult:
        try:
            statement = SQLStatement(self.iris, sql)
            return statement.execute(*(params or []))
        except SQLClientError as e:
            self.logger.error(f"语句执行失败: {str(e)} | SQL: {sql[:100]}")
            raise
        except Exception as e:
            self.logger.error(f"原生SDK调用异常: {str(e)} | SQL: {sql[:100]}")
            raise SQLClientError(str(e), backend=self.backend_name, sql=sql) from e

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        self.logger.debug(f"执行查询: {sql[:100]}")
        result = self._run(sql, params)
        return result.rows

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        self.logger.debug(f"执行语句: {sql[:100]}")
        result = self._run(sql, params)
        if result.statement_kind == StatementKind.INSERT and result.last_insert_id:
            return 1
        return result.affected_rows

    def query_with_metadata(self, sql: str, params: Optional[Sequence[Any]] = None) -> SQLResult:
        return self._run(sql, params)
