from __future__ import annotations

from datetime import datetime, timezone

from exto.domain.schema import FieldDef
from exto.services.export import HEADER_SHEET, build_workbook, export_file_name


FIELDS = [
    FieldDef(name="invoice_no", label="Invoice No"),
    FieldDef(name="total", type="currency"),
    FieldDef(
        name="line_items",
        label="Line Items",
        type="table",
        children=[
            FieldDef(name="description", label="Description"),
            FieldDef(name="qty", label="Qty", type="number"),
            FieldDef(name="price", label="Price", type="currency"),
        ],
    ),
]


def _rows(sheet) -> list[tuple]:
    return [tuple(row) for row in sheet.iter_rows(values_only=True)]


def test_table_field_gets_its_own_sheet_in_child_order() -> None:
    metadata = {
        "invoice_no": "INV-7",
        "total": 42.5,
        "line_items": [
            {"price": 10, "description": "Bolts", "qty": 2},
            {"description": "Nuts", "qty": 5},
            {"qty": 1, "price": 12.5, "description": "Washer"},
        ],
    }

    workbook = build_workbook(FIELDS, metadata)

    assert workbook.sheetnames == [HEADER_SHEET, "line_items"]
    rows = _rows(workbook["line_items"])
    assert len(rows) == 4
    assert rows[0] == ("Description", "Qty", "Price")
    assert rows[1] == ("Bolts", 2, 10)
    assert rows[2] == ("Nuts", 5, None)
    assert rows[3] == ("Washer", 1, 12.5)


def test_nested_table_rows_are_kept_as_json_cells() -> None:
    fields = [
        FieldDef(
            name="lines",
            type="table",
            children=[
                FieldDef(name="sku"),
                FieldDef(name="parts", type="table", children=[FieldDef(name="pn")]),
            ],
        )
    ]

    workbook = build_workbook(fields, {"lines": [{"sku": "A", "parts": [{"pn": "x"}]}, {"sku": "B"}]})

    assert workbook.sheetnames == [HEADER_SHEET, "lines"]
    assert _rows(workbook["lines"]) == [
        ("Sku", "Parts"),
        ("A", '[{"pn": "x"}]'),
        ("B", None),
    ]


def test_header_sheet_holds_scalar_labels_and_values() -> None:
    workbook = build_workbook(FIELDS, {"invoice_no": "INV-7", "line_items": []})

    rows = _rows(workbook[HEADER_SHEET])
    assert rows[0] == ("Invoice No", "Total")
    assert rows[1] == ("INV-7", None)
    assert len(_rows(workbook["line_items"])) == 1


def test_nested_values_are_written_as_json_text() -> None:
    fields = [FieldDef(name="address")]
    workbook = build_workbook(fields, {"address": {"city": "Oslo"}})

    assert _rows(workbook[HEADER_SHEET])[1] == ('{"city": "Oslo"}',)


def test_export_file_name_uses_slug_and_timestamp() -> None:
    now = datetime(2024, 3, 9, 14, 5, 7, tzinfo=timezone.utc)
    assert export_file_name("invoice", now) == "export_invoice_2024_03_09_14_05_07.xlsx"
