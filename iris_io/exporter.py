"""
数据导出模块

执行 SELECT 并将结果写出为 CSV / TXT / JSON / XLSX 文件
"""

import os
import re
import json
import math
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as time_type
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .config import DEFAULT_SCHEMA
from .exceptions import ValidationError
from .file_reader import FileFormat
from .sql_client import SQLClient
from .table_manager import TableManager
from .type_inference import TypeInferenceEngine

# 超出该范围的整数无法被JSON数值无损表示
MAX_SAFE_INTEGER = 2 ** 53 - 1
MAX_SHEET_NAME_LENGTH = 31
_SHEET_INVALID_CHARS = re.compile(r'[\[\]:*?/\\]')


def stringify_value(value: Any) -> str:
    """将单个值转换为文本，NULL 为空字符串"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, (date, time_type)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def escape_delimited(text: str, delimiter: str) -> str:
    """仅当值包含分隔符、引号或换行时加引号，内部引号加倍"""
    if delimiter in text or '"' in text or '\n' in text or '\r' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def to_delimited(rows: Sequence[Dict[str, Any]], delimiter: str = ",") -> str:
    """
    将结果行序列化为分隔符文本

    Args:
        rows: 结果行，表头取自第一行的键
        delimiter: 分隔符

    Returns:
        文本内容，没有数据行时为空字符串
    """
    if not rows:
        return ""

    headers = list(rows[0].keys())
    lines: List[Optional[str]] = [None] * (len(rows) + 1)
    lines[0] = delimiter.join(escape_delimited(str(header), delimiter) for header in headers)
    for index, row in enumerate(rows, start=1):
        line = delimiter.join(
            escape_delimited(stringify_value(row.get(header)), delimiter) for header in headers
        )
        # 单列空值写成 "" 以免成为空行
        lines[index] = line or '""'
    return "\n".join(lines)


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time_type)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (dict, list)):
        return value
    return str(value)


def to_json(rows: Sequence[Dict[str, Any]]) -> str:
    """将结果行序列化为格式化的JSON数组"""
    converted: List[Optional[Dict[str, Any]]] = [None] * len(rows)
    for index, row in enumerate(rows):
        converted[index] = {key: _json_value(value) for key, value in row.items()}
    return json.dumps(converted, indent=2, ensure_ascii=False)


def sheet_title(name: str) -> str:
    """生成合法的工作表名"""
    title = _SHEET_INVALID_CHARS.sub('_', name or 'Sheet1')
    return title[:MAX_SHEET_NAME_LENGTH] or 'Sheet1'


def _xlsx_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub('', value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def write_xlsx(rows: Sequence[Dict[str, Any]], path: str, sheet_name: str):
    """
    将结果行写入单工作表的XLSX文件

    Args:
        rows: 结果行
        path: 输出文件路径
        sheet_name: 工作表名，超长部分截断
    """
    workbook = Workbook(write_only=True)
    sheet = workbook.create_sheet(title=sheet_title(sheet_name))
    if rows:
        headers = list(rows[0].keys())
        sheet.append(headers)
        for row in rows:
            sheet.append([_xlsx_value(row.get(header)) for header in headers])
    workbook.save(path)


@dataclass
class ExportResult:
    """导出结果数据类"""
    table_name: str
    schema: str
    file_format: FileFormat
    output_path: str
    row_count: int = 0
    column_types: Dict[str, str] = field(default_factory=dict)
    file_size: int = 0
    execution_time: float = 0.0


class ExportPipeline:
    """导出流水线"""

    def __init__(self, sql_client: SQLClient, inference_engine: Optional[TypeInferenceEngine] = None):
        self.sql_client = sql_client
        self.inference_engine = inference_engine or TypeInferenceEngine()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def build_select(table: str, schema: str = DEFAULT_SCHEMA, limit: Optional[int] = None) -> str:
        full_name = TableManager.qualified_name(table, schema)
        if limit is None:
            return f"SELECT * FROM {full_name}"
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"行数限制必须是正整数: {limit!r}")
        return f"SELECT TOP {limit} * FROM {full_name}"

    def export_table(self, table: str, schema: str = DEFAULT_SCHEMA, file_format=FileFormat.CSV,
                     output_path: Optional[str] = None, delimiter: str = ",",
                     limit: Optional[int] = None) -> ExportResult:
        """
        导出表数据到文件

        Args:
            table: 表名
            schema: 模式名
            file_format: 输出格式
            output_path: 输出文件路径，默认为当前目录下的 <模式>.<表>.<扩展名>
            delimiter: CSV / TXT 分隔符
            limit: 最多导出的行数

        Returns:
            导出结果
        """
        start_time = time.time()
        file_format = FileFormat.resolve(file_format)
        sql = self.build_select(table, schema, limit)
        if file_format in (FileFormat.CSV, FileFormat.TXT) and not delimiter:
            raise ValidationError("分隔符不能为空")
        output_path = output_path or f"{schema}.{table}.{file_format.value}"

        self.logger.info(f"开始导出 {schema}.{table} -> {output_path} ({file_format.value})")
        sql_result = self.sql_client.query_with_metadata(sql)
        rows = sql_result.rows

        if file_format == FileFormat.XLSX:
            write_xlsx(rows, output_path, table)
        else:
            if file_format == FileFormat.JSON:
                content = to_json(rows)
            else:
                content = to_delimited(rows, delimiter)
            with open(output_path, 'w', encoding='utf-8', newline='') as f:
                f.write(content)

        result = ExportResult(
            table_name=table,
            schema=schema,
            file_format=file_format,
            output_path=output_path,
            row_count=len(rows),
            column_types=self.inference_engine.infer_from_rows(rows, sql_result.columns),
            file_size=os.path.getsize(output_path),
            execution_time=time.time() - start_time
        )
        self.logger.info(f"导出完成: {schema}.{table}, {result.row_count} 行, "
                         f"{result.file_size/1024:.1f}KB, 耗时 {result.execution_time:.2f}秒")
        return result
