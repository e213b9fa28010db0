import csv
import os
from io import BytesIO, StringIO

from openpyxl import load_workbook


def iter_rows_from_xlsx(file_stream):
    """
    Reads an uploaded .xlsx file using openpyxl and returns:
    - headers as a list of strings
    - data rows as list of dicts (header:value pairs)
    Fully blank rows are dropped.
    """
    wb = load_workbook(file_stream, data_only=True)
    try:
        sheet = wb.active

        rows = list(sheet.iter_rows(values_only=True))
        if not rows:
            return [], []

        headers = [str(h).strip() if h else "" for h in rows[0]]
        data_rows = []

        for row in rows[1:]:
            if all(cell in (None, "") for cell in row):
                continue
            row_dict = {}
            for idx, cell_value in enumerate(row):
                if idx >= len(headers):
                    break
                row_dict[headers[idx]] = cell_value
            data_rows.append(row_dict)

        return headers, data_rows
    finally:
        wb.close()


def _decode_csv_bytes(raw):
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def iter_rows_from_csv(raw):
    """Same contract as :func:`iter_rows_from_xlsx` for CSV bytes or text."""
    text = _decode_csv_bytes(raw) if isinstance(raw, bytes) else raw
    text = text.lstrip("\ufeff")
    reader = csv.reader(StringIO(text))
    rows = [row for row in reader if any((cell or "").strip() for cell in row)]
    if not rows:
        return [], []

    headers = [(h or "").strip() for h in rows[0]]
    data_rows = []
    for row in rows[1:]:
        data_rows.append(
            {header: (row[idx] if idx < len(row) else "") for idx, header in enumerate(headers)}
        )
    return headers, data_rows


def iter_rows_from_upload(upload):
    """Dispatch on the uploaded file's extension (.xlsx or .csv)."""
    filename = (getattr(upload, "filename", "") or "").lower()
    raw = upload.read()
    ext = os.path.splitext(filename)[1]
    if ext in {".xlsx", ".xlsm"}:
        return iter_rows_from_xlsx(BytesIO(raw))
    return iter_rows_from_csv(raw)
