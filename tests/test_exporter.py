#!/usr/bin/env python3
"""
导出流水线测试
"""

import os
import sys
import json
import shutil
import tempfile
import unittest
from datetime import date, datetime
from decimal import Decimal

from openpyxl import load_workbook

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iris_io.exceptions import UnsupportedFormatError, ValidationError
from iris_io.exporter import ExportPipeline, sheet_title, to_delimited, to_json, write_xlsx
from iris_io.file_reader import FileFormat, FileSource
from iris_io.importer import ImportJob, ImportPipeline
from iris_io.type_inference import TypeInferenceEngine
from tests.fakes import FakeSQLClient


class TestSerializers(unittest.TestCase):
    """纯序列化函数"""

    def test_delimited_escaping(self):
        rows = [{"a": "x,y", "b": 'say "hi"', "c": None, "d": "line\nbreak", "e": 5}]
        text = to_delimited(rows)
        self.assertEqual(text, 'a,b,c,d,e\n"x,y","say ""hi""",,"line\nbreak",5')

    def test_delimited_custom_delimiter(self):
        rows = [{"a": "x,y", "b": "p\tq"}]
        self.assertEqual(to_delimited(rows, "\t"), 'a\tb\nx,y\t"p\tq"')

    def test_single_column_null_is_quoted(self):
        self.assertEqual(to_delimited([{"a": None}, {"a": "x"}]), 'a\n""\nx')
        self.assertEqual(to_delimited([{"a": None, "b": None}]), 'a,b\n,')

    def test_delimited_empty(self):
        self.assertEqual(to_delimited([]), "")

    def test_delimited_values(self):
        rows = [{"flag": True, "when": datetime(2024, 1, 2, 3, 4, 5), "day": date(2024, 1, 2), "raw": b"\x01\xff"}]
        self.assertEqual(to_delimited(rows).split("\n")[1], "true,2024-01-02 03:04:05,2024-01-02,01ff")

    def test_json(self):
        self.assertEqual(to_json([]), "[]")

        rows = [{"big": 2 ** 60, "small": 5, "amount": Decimal("1.10"), "day": date(2024, 1, 2),
                 "raw": b"\x0a", "nan": float("nan"), "name": "王"}]
        text = to_json(rows)
        self.assertIn('\n  {\n    "big"', text)
        self.assertIn("王", text)
        self.assertEqual(json.loads(text), [{"big": str(2 ** 60), "small": 5, "amount": "1.10",
                                             "day": "2024-01-02", "raw": "0a", "nan": None, "name": "王"}])

    def test_json_safe_integer_boundary(self):
        parsed = json.loads(to_json([{"a": 2 ** 53 - 1, "b": 2 ** 53, "c": -(2 ** 53)}]))
        self.assertEqual(parsed, [{"a": 2 ** 53 - 1, "b": str(2 ** 53), "c": str(-(2 ** 53))}])

    def test_sheet_title(self):
        self.assertEqual(sheet_title("a[b]:c*?/\\d"), "a_b__c____d")
        self.assertEqual(len(sheet_title("x" * 40)), 31)
        self.assertEqual(sheet_title(""), "Sheet1")


class TestWriteXlsx(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "out.xlsx")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_rows_and_sheet_name(self):
        rows = [{"id": 1, "name": "a", "big": 2 ** 60, "note": None},
                {"id": 2, "name": "b\x07", "big": 7, "note": "n"}]
        write_xlsx(rows, self.path, "VeryLongTableNameThatExceedsTheLimit")

        workbook = load_workbook(self.path)
        sheet = workbook.worksheets[0]
        self.assertEqual(sheet.title, "VeryLongTableNameThatExceedsThe")
        values = list(sheet.iter_rows(values_only=True))
        self.assertEqual(values[0], ("id", "name", "big", "note"))
        self.assertEqual(values[1][:3], (1, "a", str(2 ** 60)))
        self.assertIn(values[1][3], (None, ""))
        self.assertEqual(values[2], (2, "b", 7, "n"))
        workbook.close()

    def test_empty_rows(self):
        write_xlsx([], self.path, "Empty")
        workbook = load_workbook(self.path)
        self.assertEqual(workbook.sheetnames, ["Empty"])
        workbook.close()


class TestExportPipeline(unittest.TestCase):
    """表导出"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.client = FakeSQLClient()
        self.client.add_table("SQLUser", "Person",
                              [("ID", "INTEGER"), ("Name", "VARCHAR(50)"), ("Joined", "DATE")],
                              rows=[{"ID": 1, "Name": "Ann, Jr.", "Joined": date(2024, 1, 2)},
                                    {"ID": 2, "Name": "Ben", "Joined": None}])
        self.pipeline = ExportPipeline(self.client)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _out(self, name: str) -> str:
        return os.path.join(self.temp_dir, name)

    def test_export_csv(self):
        result = self.pipeline.export_table("Person", output_path=self._out("p.csv"))

        with open(result.output_path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), 'ID,Name,Joined\n1,"Ann, Jr.",2024-01-02\n2,Ben,')
        self.assertEqual(result.row_count, 2)
        self.assertEqual(result.file_format, FileFormat.CSV)
        self.assertEqual(result.column_types, {"ID": "INTEGER", "Name": "VARCHAR(50)", "Joined": "DATE"})
        self.assertGreater(result.file_size, 0)
        self.assertEqual(self.client.statements[-1][0], "SELECT * FROM SQLUser.Person")

    def test_export_with_limit(self):
        result = self.pipeline.export_table("Person", file_format="json", output_path=self._out("p.json"), limit=1)

        self.assertEqual(self.client.statements[-1][0], "SELECT TOP 1 * FROM SQLUser.Person")
        with open(result.output_path, 'r', encoding='utf-8') as f:
            self.assertEqual(json.load(f), [{"ID": 1, "Name": "Ann, Jr.", "Joined": "2024-01-02"}])

    def test_export_txt_and_xlsx(self):
        txt = self.pipeline.export_table("Person", file_format=FileFormat.TXT,
                                         output_path=self._out("p.txt"), delimiter="|")
        with open(txt.output_path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.readline().strip(), "ID|Name|Joined")

        xlsx = self.pipeline.export_table("Person", file_format="xlsx", output_path=self._out("p.xlsx"))
        rows = list(FileSource(xlsx.output_path).iter_rows())
        self.assertEqual(rows[0], {"ID": "1", "Name": "Ann, Jr.", "Joined": "2024-01-02"})

    def test_empty_table(self):
        self.client.add_table("SQLUser", "Nothing", [("ID", "INTEGER")])
        result = self.pipeline.export_table("Nothing", file_format="json", output_path=self._out("n.json"))
        with open(result.output_path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "[]")
        self.assertEqual(result.row_count, 0)

    def test_invalid_arguments(self):
        for kwargs in ({"limit": 0}, {"limit": -3}, {"limit": True}):
            with self.assertRaises(ValidationError):
                self.pipeline.export_table("Person", output_path=self._out("x.csv"), **kwargs)
        with self.assertRaises(ValidationError):
            self.pipeline.export_table("Person; DROP", output_path=self._out("x.csv"))
        with self.assertRaises(UnsupportedFormatError):
            self.pipeline.export_table("Person", file_format="xml", output_path=self._out("x.xml"))
        self.assertEqual(self.client.statements, [])


class TestRoundTrip(unittest.TestCase):
    """CSV 导入后再导出，内容与推断类型保持一致"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_csv_round_trip(self):
        source_path = os.path.join(self.temp_dir, "orders.csv")
        with open(source_path, 'w', encoding='utf-8', newline='') as f:
            f.write(
                "id,customer,amount,ordered\n"
                "1,\"Smith, John\",19.5,2024-03-01\n"
                "2,Lee,20,2024-03-02 10:15:00\n"
                "3,\"O\"\"Brien\",7.25,2024-03-03\n"
            )

        client = FakeSQLClient()
        engine = TypeInferenceEngine()
        imported = ImportPipeline(client, engine).run(ImportJob(source_path, "Orders"))
        exported = ExportPipeline(client, engine).export_table(
            "Orders", output_path=os.path.join(self.temp_dir, "orders_out.csv"))

        self.assertEqual(exported.row_count, imported.inserted_rows)
        self.assertEqual(exported.column_types, {c.name: c.inferred_type for c in imported.columns})
        self.assertEqual(list(FileSource(exported.output_path).iter_rows()),
                         list(FileSource(source_path).iter_rows()))

    def test_null_only_rows_survive_round_trip(self):
        client = FakeSQLClient()
        client.add_table("SQLUser", "Src", [("ID", "INTEGER"), ("Name", "VARCHAR(20)")],
                         rows=[{"ID": 1, "Name": "x"}, {"ID": None, "Name": None}, {"ID": 3, "Name": "z"}])
        client.add_table("SQLUser", "Solo", [("Note", "VARCHAR(10)")],
                         rows=[{"Note": "a"}, {"Note": None}, {"Note": "c"}])
        exporter = ExportPipeline(client)
        importer = ImportPipeline(client)

        pair_path = os.path.join(self.temp_dir, "src.csv")
        exported = exporter.export_table("Src", output_path=pair_path)
        with open(pair_path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "ID,Name\n1,x\n,\n3,z")
        imported = importer.run(ImportJob(pair_path, "Dst"))
        self.assertEqual(imported.inserted_rows, exported.row_count)
        self.assertEqual(client.tables[("SQLUser", "Dst")].rows[1], {"ID": None, "Name": None})

        solo_path = os.path.join(self.temp_dir, "solo.csv")
        exported = exporter.export_table("Solo", output_path=solo_path)
        imported = importer.run(ImportJob(solo_path, "SoloCopy"))
        self.assertEqual(imported.inserted_rows, 3)
        self.assertEqual([row["Note"] for row in client.tables[("SQLUser", "SoloCopy")].rows], ["a", None, "c"])


if __name__ == '__main__':
    unittest.main()
