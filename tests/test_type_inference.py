#!/usr/bin/env python3
"""
类型推断测试

覆盖规则顺序、长度分档、值类型合并、文件分析和查询结果推断
"""

import os
import sys
import json
import shutil
import tempfile
import unittest

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iris_io.sql_types import CanonicalType, ColumnMeta
from iris_io.type_inference import (INFERENCE_RULES, TypeInferenceEngine, combine_types,
                                    sanitize_column_name)


class TestColumnRules(unittest.TestCase):
    """按列推断规则"""

    def setUp(self):
        self.engine = TypeInferenceEngine()

    def test_integer_and_bigint(self):
        self.assertEqual(self.engine.infer_column_type(["1", "-20", "300"]), "INTEGER")
        self.assertEqual(self.engine.infer_column_type(["1", "3000000000"]), "BIGINT")

    def test_zero_one_column_is_integer(self):
        # 整数规则排在 0/1 规则之前
        self.assertEqual(self.engine.infer_column_type(["0", "1", "1"]), "INTEGER")

    def test_declared_order_can_be_changed(self):
        by_name = {rule.name: rule for rule in INFERENCE_RULES}
        rules = [by_name['strict_boolean']] + [rule for rule in INFERENCE_RULES if rule.name != 'strict_boolean']
        engine = TypeInferenceEngine(rules=rules)
        self.assertEqual(engine.infer_column_type(["0", "1"]), "BIT")

    def test_decimal(self):
        self.assertEqual(self.engine.infer_column_type(["1.5", "2", "-3.25"]), "DOUBLE")
        self.assertEqual(self.engine.infer_column_type(["+5"]), "DOUBLE")

    def test_dates(self):
        self.assertEqual(self.engine.infer_column_type(["2024-01-01", "2023-12-31"]), "DATE")
        self.assertEqual(self.engine.infer_column_type(["2024-01-01", "2024-01-02 10:30:00"]), "TIMESTAMP")
        self.assertEqual(self.engine.infer_column_type(["2024-01-01T10:30:00.123"]), "TIMESTAMP")

    def test_date_without_seconds_is_text(self):
        self.assertEqual(self.engine.infer_column_type(["2024-01-01T10:30"]), "VARCHAR(255)")

    def test_human_boolean(self):
        self.assertEqual(self.engine.infer_column_type(["yes", "No", "TRUE", "false"]), "VARCHAR(5)")

    def test_text_lengths(self):
        self.assertEqual(self.engine.infer_column_type(["abc"]), "VARCHAR(255)")
        self.assertEqual(self.engine.infer_column_type(["x" * 255]), "VARCHAR(255)")
        self.assertEqual(self.engine.infer_column_type(["x" * 256]), "VARCHAR(4000)")
        self.assertEqual(self.engine.infer_column_type(["x" * 4001]), "CLOB")

    def test_blank_values_are_ignored(self):
        self.assertEqual(self.engine.infer_column_type(["", None, " 12 "]), "INTEGER")
        self.assertEqual(self.engine.infer_column_type([None, "", "   "]), "VARCHAR(255)")
        self.assertEqual(self.engine.infer_column_type([]), "VARCHAR(255)")

    def test_mixed_values_fall_back_to_text(self):
        self.assertEqual(self.engine.infer_column_type(["1", "abc"]), "VARCHAR(255)")


class TestValueKinds(unittest.TestCase):
    """按值类型推断（JSON与查询结果）"""

    def setUp(self):
        self.engine = TypeInferenceEngine()

    def test_infer_value_type(self):
        self.assertIsNone(self.engine.infer_value_type(None))
        self.assertEqual(self.engine.infer_value_type(True), "BIT")
        self.assertEqual(self.engine.infer_value_type(7), "INTEGER")
        self.assertEqual(self.engine.infer_value_type(2 ** 40), "BIGINT")
        self.assertEqual(self.engine.infer_value_type(3.0), "INTEGER")
        self.assertEqual(self.engine.infer_value_type(2.5), "DOUBLE")
        self.assertEqual(self.engine.infer_value_type({"a": 1}), "CLOB")
        self.assertEqual(self.engine.infer_value_type([1, 2]), "CLOB")
        self.assertEqual(self.engine.infer_value_type("2024-05-01"), "DATE")
        self.assertEqual(self.engine.infer_value_type("hello"), "VARCHAR(255)")

    def test_combine_types(self):
        self.assertEqual(combine_types([None, None]), "VARCHAR(255)")
        self.assertEqual(combine_types(["INTEGER", None, "INTEGER"]), "INTEGER")
        self.assertEqual(combine_types(["INTEGER", "BIGINT"]), "BIGINT")
        self.assertEqual(combine_types(["INTEGER", "DOUBLE"]), "DOUBLE")
        self.assertEqual(combine_types(["DATE", "TIMESTAMP"]), "TIMESTAMP")
        self.assertEqual(combine_types(["DATE", "VARCHAR(255)"]), "VARCHAR(255)")
        self.assertEqual(combine_types(["VARCHAR(4000)", "INTEGER"]), "VARCHAR(4000)")
        self.assertEqual(combine_types(["CLOB", "BIT"]), "CLOB")

    def test_infer_from_rows_prefers_metadata(self):
        rows = [{'name': 'a', 'price': '1.50', 'qty': 3}]
        columns = [
            ColumnMeta('name', CanonicalType.VARCHAR, precision=50),
            ColumnMeta('price', CanonicalType.DECIMAL, precision=10, scale=2),
            ColumnMeta('qty', CanonicalType.UNKNOWN),
        ]
        types = self.engine.infer_from_rows(rows, columns)
        self.assertEqual(types, {'name': 'VARCHAR(50)', 'price': 'NUMERIC(10,2)', 'qty': 'INTEGER'})

    def test_infer_from_rows_without_metadata(self):
        rows = [{'id': 1, 'label': 'x', 'created': None}, {'id': 2, 'label': 'y', 'created': None}]
        types = self.engine.infer_from_rows(rows)
        self.assertEqual(types, {'id': 'INTEGER', 'label': 'VARCHAR(255)', 'created': 'VARCHAR(255)'})
        self.assertEqual(self.engine.infer_from_rows([]), {})


class TestColumnNames(unittest.TestCase):
    """列名规范化"""

    def test_sanitize(self):
        self.assertEqual(sanitize_column_name(" Full Name "), "Full_Name")
        self.assertEqual(sanitize_column_name("price($)"), "price___")
        self.assertEqual(sanitize_column_name("1st"), "_1st")
        self.assertEqual(len(sanitize_column_name("c" * 200)), 128)

    def test_sanitize_is_idempotent(self):
        for name in ["a b", "1st", "x-y.z", "ok_name"]:
            once = sanitize_column_name(name)
            self.assertEqual(sanitize_column_name(once), once)


class TestAnalyzeFile(unittest.TestCase):
    """源文件分析"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.engine = TypeInferenceEngine()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _write(self, name: str, content: str) -> str:
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        return path

    def test_analyze_csv(self):
        path = self._write("people.csv", (
            "id,Full Name,score,joined,active,note\n"
            "1,Alice,9.5,2024-01-01,yes,\n"
            "2,Bob,7,2024-02-01,no,hello\n"
        ))
        columns = self.engine.analyze_file(path)

        self.assertEqual([c.name for c in columns], ["id", "Full_Name", "score", "joined", "active", "note"])
        self.assertEqual([c.original_name for c in columns][1], "Full Name")
        self.assertEqual([c.inferred_type for c in columns],
                         ["INTEGER", "VARCHAR(255)", "DOUBLE", "DATE", "VARCHAR(5)", "VARCHAR(255)"])
        self.assertEqual(columns[0].sample_value, "1")
        self.assertEqual(columns[5].sample_value, "hello")

    def test_duplicate_sanitized_names(self):
        path = self._write("dup.csv", "a b,a-b,Name,name\n1,2,3,4\n")
        names = [c.name for c in self.engine.analyze_file(path)]
        self.assertEqual(names, ["a_b", "a_b_2", "Name", "name_2"])

    def test_analyze_tab_delimited_txt(self):
        path = self._write("data.txt", "code\tamount\nA1\t10\nB2\t20\n")
        columns = self.engine.analyze_file(path, delimiter="\t")
        self.assertEqual([(c.name, c.inferred_type) for c in columns],
                         [("code", "VARCHAR(255)"), ("amount", "INTEGER")])

    def test_analyze_json_uses_value_kinds(self):
        path = os.path.join(self.temp_dir, "items.json")
        with open(path, 'w', encoding='utf-8') as f:
            json.dump([
                {"id": 1, "score": 1.5, "ok": True, "tags": ["a"]},
                {"id": 3000000000, "score": 2, "ok": False, "tags": None},
            ], f)
        types = {c.name: c.inferred_type for c in self.engine.analyze_file(path)}
        self.assertEqual(types, {"id": "BIGINT", "score": "DOUBLE", "ok": "BIT", "tags": "CLOB"})

    def test_sample_size_limits_rows(self):
        lines = ["value"] + [str(i) for i in range(10)] + ["not a number"]
        path = self._write("big.csv", "\n".join(lines) + "\n")
        engine = TypeInferenceEngine(sample_size=10)
        self.assertEqual(engine.analyze_file(path)[0].inferred_type, "INTEGER")


if __name__ == '__main__':
    unittest.main()
