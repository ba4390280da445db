"""
源文件读取模块

负责识别文件格式与编码，并以流式方式逐行读取 CSV / TXT / JSON / XLSX 文件
"""

import os
import csv
import json
import logging
from datetime import date, datetime
from datetime import time as dt_time
from enum import Enum
from itertools import islice
from typing import Any, Dict, Iterator, List, Optional

import chardet
from openpyxl import load_workbook

from .exceptions import FileFormatError, UnsupportedFormatError

# 检测结果无法解码时依次尝试
FALLBACK_ENCODINGS = ('utf-8-sig', 'gbk', 'latin-1')


class FileFormat(Enum):
    """支持的文件格式"""
    CSV = "csv"
    TXT = "txt"
    JSON = "json"
    XLSX = "xlsx"

    @classmethod
    def resolve(cls, file_format=None, path: str = "") -> 'FileFormat':
        """
        确定文件格式

        Args:
            file_format: 显式指定的格式，可以是枚举或字符串
            path: 文件路径，未指定格式时按扩展名判断

        Returns:
            文件格式

        Raises:
            UnsupportedFormatError: 格式不受支持
        """
        if isinstance(file_format, cls):
            return file_format
        name = file_format or os.path.splitext(path)[1].lstrip('.')
        try:
            return cls(str(name).lower())
        except ValueError:
            raise UnsupportedFormatError(str(name) or "(无扩展名)", path)


def detect_file_encoding(file_path: str) -> Dict:
    """
    检测文件编码

    Args:
        file_path: 文件路径

    Returns:
        包含编码信息的字典
    """
    logger = logging.getLogger(__name__)

    # 读取前100KB用于编码检测
    with open(file_path, 'rb') as f:
        raw_data = f.read(102400)

    result = chardet.detect(raw_data)
    detected = result.get('encoding')
    confidence = result.get('confidence') or 0.0

    # 常见误判映射
    encoding_map = {
        'GB2312': 'gbk',
        'gb2312': 'gbk',
        'GBK': 'gbk',
        'ascii': 'utf-8-sig',
        'utf-8': 'utf-8-sig',
        'UTF-8-SIG': 'utf-8-sig',
        'windows-1252': 'utf-8-sig',
        'ISO-8859-1': 'utf-8-sig',
    }

    if detected is None or confidence < 0.7:
        encoding = 'utf-8-sig'
    else:
        encoding = encoding_map.get(detected, detected)

    if detected and encoding != detected:
        logger.debug(f"编码映射: {detected} -> {encoding}")

    return {
        'encoding': encoding,
        'confidence': confidence,
        'original_encoding': detected
    }


def cell_to_text(value) -> Optional[str]:
    """
    将电子表格单元格转换为文本

    日期单元格在零点时只保留日期部分，使表格与CSV走同一套推断规则
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        if value.time() == dt_time(0, 0):
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, (date, dt_time)):
        return value.isoformat()
    return str(value)


def _unique_headers(raw_headers) -> List[str]:
    """空表头补全为 column_<n>，重复表头追加序号"""
    headers = []
    seen = {}
    for index, header in enumerate(raw_headers):
        name = str(header).strip() if header is not None else ''
        if not name:
            name = f"column_{index + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


def _decodes_cleanly(file_path: str, encoding: str) -> bool:
    """按块读取整个文件，检查是否能以该编码解码"""
    try:
        with open(file_path, 'r', encoding=encoding, newline='') as f:
            while f.read(1024 * 1024):
                pass
        return True
    except (UnicodeDecodeError, LookupError):
        return False


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class FileSource:
    """
    源文件读取器

    行以 {原始表头: 值} 字典的形式按源文件顺序返回
    """

    def __init__(self, file_path: str, file_format=None, delimiter: str = ","):
        """
        初始化读取器

        Args:
            file_path: 文件路径
            file_format: 文件格式，未指定时按扩展名判断
            delimiter: 分隔符，仅 CSV / TXT 使用
        """
        self.file_path = file_path
        self.file_format = FileFormat.resolve(file_format, file_path)
        self.delimiter = delimiter or ","
        self.logger = logging.getLogger(__name__)

        if not os.path.isfile(file_path):
            raise FileFormatError("文件不存在", file_path)

        self._encoding = None
        self._headers = None
        self._json_data = None

    @property
    def encoding(self) -> Optional[str]:
        if self.file_format not in (FileFormat.CSV, FileFormat.TXT):
            return None
        if self._encoding is None:
            self._encoding = self._resolve_encoding()
        return self._encoding

    def _resolve_encoding(self) -> str:
        """
        确定可以完整解码文件的编码

        依次尝试检测结果、chardet 原始结果、utf-8-sig、gbk、latin-1

        Raises:
            FileFormatError: 所有候选编码均无法解码
        """
        info = detect_file_encoding(self.file_path)
        self.logger.info(f"检测到文件编码: {info['original_encoding']} -> {info['encoding']} (置信度: {info['confidence']:.2f})")

        candidates = []
        for name in (info['encoding'], info['original_encoding']) + FALLBACK_ENCODINGS:
            if name and name.lower() not in [c.lower() for c in candidates]:
                candidates.append(name)

        for encoding in candidates:
            if _decodes_cleanly(self.file_path, encoding):
                if encoding != info['encoding']:
                    self.logger.warning(f"无法以 {info['encoding']} 解码，改用 {encoding}")
                return encoding
            self.logger.debug(f"尝试编码 {encoding} 失败")
        raise FileFormatError(f"无法解码，已尝试编码: {', '.join(candidates)}", self.file_path)

    @property
    def headers(self) -> List[str]:
        if self._headers is None:
            if self.file_format == FileFormat.JSON:
                self._headers = self._json_headers()
            else:
                self._headers = _unique_headers(self._first_record())
        return self._headers

    def iter_rows(self) -> Iterator[Dict[str, Any]]:
        """逐行读取数据（跳过空行，CSV / TXT 中只有分隔符的行按全空值行返回）"""
        if self.file_format == FileFormat.JSON:
            yield from self._iter_json()
            return

        headers = self.headers
        records = self._iter_delimited() if self.file_format != FileFormat.XLSX else self._iter_xlsx()
        try:
            next(records, None)  # 表头
            for record in records:
                if self.file_format == FileFormat.XLSX and all(_is_blank(value) for value in record):
                    continue
                values = list(record[:len(headers)])
                values.extend([None] * (len(headers) - len(values)))
                yield dict(zip(headers, values))
        finally:
            records.close()

    def sample(self, size: int = 100) -> List[Dict[str, Any]]:
        """读取前 size 行作为样本"""
        rows = self.iter_rows()
        try:
            return list(islice(rows, size))
        finally:
            rows.close()

    def count_rows(self) -> int:
        """统计数据行数"""
        if self.file_format == FileFormat.JSON:
            return len(self._load_json())
        return sum(1 for _ in self.iter_rows())

    def _first_record(self) -> List:
        records = self._iter_delimited() if self.file_format != FileFormat.XLSX else self._iter_xlsx()
        try:
            first = next(records, None)
        finally:
            records.close()
        if first is None:
            raise FileFormatError("文件为空，缺少表头", self.file_path)
        first = list(first)
        # 去掉表头行末尾的空单元格
        while first and _is_blank(first[-1]):
            first.pop()
        return first

    def _iter_delimited(self) -> Iterator[List]:
        try:
            with open(self.file_path, 'r', encoding=self.encoding, newline='') as f:
                reader = csv.reader(f, delimiter=self.delimiter)
                for record in reader:
                    if record:
                        yield record
        except UnicodeDecodeError as e:
            raise FileFormatError(f"无法以 {self.encoding} 解码 ({str(e)})", self.file_path)
        except csv.Error as e:
            raise FileFormatError(f"CSV解析失败 ({str(e)})", self.file_path)

    def _iter_xlsx(self) -> Iterator[List]:
        workbook = load_workbook(self.file_path, read_only=True, data_only=True)
        try:
            if not workbook.worksheets:
                return
            sheet = workbook.worksheets[0]
            for record in sheet.iter_rows(values_only=True):
                yield [cell_to_text(value) for value in record]
        finally:
            workbook.close()

    def _load_json(self) -> List[Dict[str, Any]]:
        if self._json_data is not None:
            return self._json_data
        try:
            with open(self.file_path, 'r', encoding='utf-8-sig') as f:
                data = json.load(f)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FileFormatError(f"JSON解析失败 ({str(e)})", self.file_path)

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise FileFormatError("JSON内容必须是对象或对象数组", self.file_path)
        self._json_data = data
        return data

    def _json_headers(self) -> List[str]:
        headers = []
        for item in self._load_json()[:100]:
            for key in item:
                if key not in headers:
                    headers.append(key)
        return headers

    def _iter_json(self) -> Iterator[Dict[str, Any]]:
        for item in self._load_json():
            yield item
