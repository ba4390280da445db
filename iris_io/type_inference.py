"""
类型推断模块

根据源文件样本或查询结果推断列的SQL类型，并生成合法的列名

推断按列进行：样本中所有非空值都满足某条规则时该规则才生效，
规则按 INFERENCE_RULES 中声明的顺序匹配，先匹配者优先
"""

import re
import math
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .file_reader import FileFormat, FileSource
from .sql_types import CanonicalType, ColumnMeta

INT32_MAX = 2147483647
MAX_NAME_LENGTH = 128
DEFAULT_SAMPLE_SIZE = 100

DEFAULT_TEXT_TYPE = "VARCHAR(255)"
LONG_TEXT_TYPE = "VARCHAR(4000)"
CLOB_TYPE = "CLOB"
HUMAN_BOOLEAN_TYPE = "VARCHAR(5)"

_INTEGER_PATTERN = re.compile(r'^-?\d+$')
_DECIMAL_PATTERN = re.compile(r'^[-+]?\d+(\.\d+)?$')
_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?)?$')
_TIME_COMPONENT_PATTERN = re.compile(r'\d{2}:\d{2}:\d{2}')
_NAME_INVALID_CHARS = re.compile(r'[^A-Za-z0-9_]')

_STRICT_BOOLEAN_TOKENS = frozenset(['0', '1'])
_HUMAN_BOOLEAN_TOKENS = frozenset(['yes', 'no', 'true', 'false'])

# 文本类型由窄到宽
_TEXT_WIDTH = {HUMAN_BOOLEAN_TYPE: 0, DEFAULT_TEXT_TYPE: 1, LONG_TEXT_TYPE: 2, CLOB_TYPE: 3}


def sanitize_column_name(name: str) -> str:
    """
    生成合法列名

    去除首尾空白，非 [A-Za-z0-9_] 字符替换为下划线，数字开头时加下划线前缀，最长128字符
    """
    cleaned = _NAME_INVALID_CHARS.sub('_', str(name).strip())
    if cleaned[:1].isdigit():
        cleaned = '_' + cleaned
    return cleaned[:MAX_NAME_LENGTH]


def _integer_type(values: Sequence[str]) -> str:
    largest = max(abs(int(value)) for value in values)
    return "BIGINT" if largest > INT32_MAX else "INTEGER"


def _date_type(values: Sequence[str]) -> str:
    if any(_TIME_COMPONENT_PATTERN.search(value) for value in values):
        return "TIMESTAMP"
    return "DATE"


def _text_type(values: Sequence[str]) -> str:
    longest = max(len(value) for value in values)
    if longest <= 255:
        return DEFAULT_TEXT_TYPE
    if longest <= 4000:
        return LONG_TEXT_TYPE
    return CLOB_TYPE


def _all_match(pattern) -> Callable[[Sequence[str]], bool]:
    return lambda values: all(pattern.match(value) for value in values)


def _all_in(tokens) -> Callable[[Sequence[str]], bool]:
    return lambda values: all(value.lower() in tokens for value in values)


@dataclass(frozen=True)
class InferenceRule:
    """推断规则：matches 对整列样本判定，resolve 给出SQL类型"""
    name: str
    matches: Callable[[Sequence[str]], bool]
    resolve: Callable[[Sequence[str]], str]


INFERENCE_RULES: Tuple[InferenceRule, ...] = (
    InferenceRule('integer', _all_match(_INTEGER_PATTERN), _integer_type),
    InferenceRule('decimal', _all_match(_DECIMAL_PATTERN), lambda values: "DOUBLE"),
    InferenceRule('date', _all_match(_DATE_PATTERN), _date_type),
    InferenceRule('strict_boolean', _all_in(_STRICT_BOOLEAN_TOKENS), lambda values: "BIT"),
    InferenceRule('human_boolean', _all_in(_HUMAN_BOOLEAN_TOKENS), lambda values: HUMAN_BOOLEAN_TYPE),
    InferenceRule('text', lambda values: True, _text_type),
)


def combine_types(types: Iterable[Optional[str]]) -> str:
    """
    合并同一列多个值的推断类型

    Args:
        types: 单值推断结果，None 表示空值

    Returns:
        能容纳所有值的类型
    """
    distinct = {t for t in types if t}
    if not distinct:
        return DEFAULT_TEXT_TYPE
    if len(distinct) == 1:
        return distinct.pop()
    if distinct <= {"INTEGER", "BIGINT"}:
        return "BIGINT"
    if distinct <= {"INTEGER", "BIGINT", "DOUBLE"}:
        return "DOUBLE"
    if distinct <= {"DATE", "TIMESTAMP"}:
        return "TIMESTAMP"
    # 其余混合情况退化为能容纳全部值的最窄文本类型，至少 VARCHAR(255)
    width = max(_TEXT_WIDTH.get(t, 1) for t in distinct)
    width = max(width, 1)
    return next(name for name, rank in _TEXT_WIDTH.items() if rank == width)


@dataclass
class ColumnAnalysis:
    """列分析结果"""
    name: str
    original_name: str
    inferred_type: str
    sample_value: Any = None


class TypeInferenceEngine:
    """类型推断引擎，无状态，可在多个任务间共享"""

    def __init__(self, sample_size: int = DEFAULT_SAMPLE_SIZE,
                 rules: Sequence[InferenceRule] = INFERENCE_RULES):
        self.sample_size = sample_size
        self.rules = tuple(rules)
        self.logger = logging.getLogger(__name__)

    def match_rule(self, values: Iterable[Any]) -> Optional[InferenceRule]:
        """返回样本匹配的第一条规则，样本为空时返回 None"""
        sampled = [str(value).strip() for value in values if value is not None and str(value).strip()]
        if not sampled:
            return None
        for rule in self.rules:
            if rule.matches(sampled):
                return rule
        return None

    def infer_column_type(self, values: Iterable[Any]) -> str:
        """
        推断一列字符串样本的SQL类型

        Args:
            values: 该列的样本值，空值和空白字符串会被忽略

        Returns:
            SQL类型，样本为空时为 VARCHAR(255)
        """
        sampled = [str(value).strip() for value in values if value is not None and str(value).strip()]
        rule = self.match_rule(sampled)
        if rule is None:
            return DEFAULT_TEXT_TYPE
        return rule.resolve(sampled)

    def infer_value_type(self, value: Any) -> Optional[str]:
        """
        按运行时类型推断单个值的SQL类型

        Returns:
            SQL类型，空值返回 None
        """
        if value is None:
            return None
        if isinstance(value, bool):
            return "BIT"
        if isinstance(value, int):
            return "BIGINT" if abs(value) > INT32_MAX else "INTEGER"
        if isinstance(value, (float, Decimal)):
            if not math.isfinite(value):
                return "DOUBLE"
            if value == int(value):
                return "BIGINT" if abs(int(value)) > INT32_MAX else "INTEGER"
            return "DOUBLE"
        if isinstance(value, datetime):
            return "TIMESTAMP"
        if isinstance(value, date):
            return "DATE"
        if isinstance(value, time):
            return "TIME"
        if isinstance(value, (bytes, bytearray)):
            return "VARBINARY"
        if isinstance(value, (dict, list)):
            return CLOB_TYPE
        text = str(value)
        if _DATE_PATTERN.match(text.strip()):
            return _date_type([text])
        return _text_type([text])

    def analyze_file(self, file_path: str, file_format=None, delimiter: str = ",") -> List[ColumnAnalysis]:
        """
        分析源文件，推断每列的类型

        Args:
            file_path: 文件路径
            file_format: 文件格式，未指定时按扩展名判断
            delimiter: CSV / TXT 分隔符

        Returns:
            列分析结果列表，顺序与源文件表头一致
        """
        return self.analyze_source(FileSource(file_path, file_format, delimiter))

    def analyze_source(self, source: FileSource) -> List[ColumnAnalysis]:
        """分析已打开的源文件"""
        sample = source.sample(self.sample_size)
        headers = source.headers
        self.logger.info(f"分析文件 {source.file_path}: {len(headers)} 列, 样本 {len(sample)} 行")

        by_value_kind = source.file_format == FileFormat.JSON
        analyses = []
        used_names = set()
        for header in headers:
            values = [row.get(header) for row in sample]
            if by_value_kind:
                inferred = combine_types(self.infer_value_type(value) for value in values)
            else:
                inferred = self.infer_column_type(values)

            name = self._unique_name(sanitize_column_name(header), used_names)
            sample_value = next((value for value in values if value not in (None, '')), None)
            analyses.append(ColumnAnalysis(
                name=name,
                original_name=header,
                inferred_type=inferred,
                sample_value=sample_value
            ))
            self.logger.debug(f"列 {header} -> {name} {inferred}")
        return analyses

    @staticmethod
    def _unique_name(name: str, used_names: set) -> str:
        if not name:
            name = "_"
        candidate = name
        suffix = 2
        while candidate.lower() in used_names:
            tail = f"_{suffix}"
            candidate = name[:MAX_NAME_LENGTH - len(tail)] + tail
            suffix += 1
        used_names.add(candidate.lower())
        return candidate

    def infer_from_rows(self, rows: Sequence[Dict[str, Any]],
                        columns: Optional[Sequence[ColumnMeta]] = None) -> Dict[str, str]:
        """
        根据查询结果推断每列的SQL类型

        有列元数据时以元数据为准，否则按值的运行时类型推断

        Args:
            rows: 查询结果行
            columns: 列元数据

        Returns:
            {列名: SQL类型}
        """
        if columns:
            names = [column.name for column in columns]
        elif rows:
            names = list(rows[0].keys())
        else:
            return {}

        meta_by_name = {column.name: column for column in columns or []}
        sample = rows[:self.sample_size]
        result = {}
        for name in names:
            declared = self._type_from_meta(meta_by_name.get(name))
            if declared:
                result[name] = declared
            else:
                result[name] = combine_types(self.infer_value_type(row.get(name)) for row in sample)
        return result

    @staticmethod
    def _type_from_meta(meta: Optional[ColumnMeta]) -> Optional[str]:
        if meta is None:
            return None
        data_type = meta.data_type
        if data_type == CanonicalType.DECIMAL:
            if meta.precision:
                return f"NUMERIC({meta.precision},{meta.scale or 0})"
            return "NUMERIC"
        if data_type == CanonicalType.VARCHAR:
            if meta.precision and meta.precision <= 4000:
                return f"VARCHAR({meta.precision})"
            return None
        if data_type == CanonicalType.BINARY:
            return "VARBINARY"
        if data_type == CanonicalType.UNKNOWN:
            return None
        return data_type.value
