from datetime import date
from decimal import Decimal

import pytest

from payment_analyzer.domain.models import DocumentKind, UploadedDocument
from payment_analyzer.domain.values import Money
from payment_analyzer.exceptions import NoDataExtractedError, ParseError
from payment_analyzer.infrastructure.parsing.extractor import DocumentExtractor
from payment_analyzer.infrastructure.parsing import pdf
from payment_analyzer.infrastructure.parsing.invoice import extract_invoice, read_invoice
from payment_analyzer.infrastructure.parsing.pdf import PdfTextExtractor
from payment_analyzer.infrastructure.parsing.records import RawCount, RawPayment, sanitize_records
from payment_analyzer.infrastructure.parsing.runsheet import consignment_ids, extract_runsheet, page_date, read_runsheet
from payment_analyzer.infrastructure.parsing.utils import classify_document, decode_text

RUNSHEET_TEXT = (
    "Runsheet Route 12\n"
    "Date: 02/01/2024\n"
    "1 1234567 Smith Delivery\n"
    "2 AH123 Jones Collection\n"
    "\f"
    "Date: 03/01/2024\n"
    "1 7654321 High Street Delivery\n"
    "\f"
    "Continued\n"
    "1 1111111 Delivery\n"
)

INVOICE_TEXT = (
    "Invoice DV_001\n"
    "02/01/24 08:30 Parcel 45.50 GBP\n"
    "02/01/24 09:15 -PickUp Collection 12.00 GBP\n"
    "03/01/24 10:00 Pallet 999.99 GBP\n"
    "Docket Total: £57.50\n"
)


class FakeTextExtractor:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls = []

    def extract_text(self, content: bytes, filename: str) -> str:
        self.calls.append(filename)
        return self.text


def make_document(name: str, text: str) -> UploadedDocument:
    return UploadedDocument(name=name, content=text.encode("utf-8"), last_modified=1700000000000)


@pytest.mark.parametrize(
    "filename, kind",
    [
        ("Runsheet_week1.pdf", DocumentKind.RUNSHEET),
        ("run-sheet.csv", DocumentKind.RUNSHEET),
        ("INVOICE-0042.pdf", DocumentKind.INVOICE),
        ("dv_12345.txt", DocumentKind.INVOICE),
        ("notes.txt", DocumentKind.UNKNOWN),
    ],
)
def test_classify_document(filename, kind):
    assert classify_document(filename) is kind


def test_page_date_patterns():
    assert page_date("Date: 02/01/2024 Route 1") == date(2024, 1, 2)
    assert page_date("Printed 2024-01-04") == date(2024, 1, 4)
    assert page_date("date 5/1/24") == date(2024, 1, 5)
    assert page_date("no date here") is None


def test_consignment_ids_need_delivery_or_collection_nearby():
    text = "1 1234567 Delivery 2 AH99 Collection 3 7654321 Returned"

    assert consignment_ids(text) == ["1234567", "AH99"]


def test_runsheet_counts_per_page_and_skips_undated_pages():
    parsed = read_runsheet(RUNSHEET_TEXT.encode("utf-8"), "runsheet.txt")

    assert parsed.counts == {date(2024, 1, 2): 2, date(2024, 1, 3): 1}
    assert any("page 3" in warning for warning in parsed.warnings)


def test_runsheet_falls_back_to_date_in_filename():
    counts = extract_runsheet(b"1 1111111 Delivery\n2 2222222 Delivery", "runsheet_2024-01-05.txt")

    assert counts == {date(2024, 1, 5): 2}


def test_runsheet_same_date_pages_are_summed():
    text = "Date: 02/01/2024\n1 1234567 Delivery\fDate: 02/01/2024\n1 7654321 Delivery"

    assert extract_runsheet(text.encode("utf-8"), "runsheet.txt") == {date(2024, 1, 2): 2}


def test_runsheet_without_consignments_raises():
    with pytest.raises(ParseError):
        read_runsheet(b"Date: 02/01/2024\nnothing to see", "runsheet.txt")


def test_pdf_needs_text_extractor():
    with pytest.raises(ParseError):
        read_runsheet(b"%PDF-1.4", "runsheet.pdf")

    extractor = FakeTextExtractor(RUNSHEET_TEXT)
    counts = extract_runsheet(b"%PDF-1.4", "runsheet.pdf", extractor)

    assert extractor.calls == ["runsheet.pdf"]
    assert counts[date(2024, 1, 2)] == 2


def test_invoice_lines_amount_bounds_and_pickups():
    parsed = read_invoice(INVOICE_TEXT.encode("utf-8"), "invoice.txt")

    assert [line.amount for line in parsed.lines] == [Money.of("45.50"), Money.of("12.00")]
    assert [line.time for line in parsed.lines] == ["08:30", "09:15"]
    assert parsed.lines[1].is_pickup
    assert parsed.lines[1].service_type == "Pickup Service"
    assert any("999.99" in warning for warning in parsed.warnings)
    assert not any("mismatch" in warning for warning in parsed.warnings)


def test_invoice_total_mismatch_is_reported():
    text = INVOICE_TEXT.replace("£57.50", "£60.00")

    parsed = read_invoice(text.encode("utf-8"), "invoice.txt")

    assert any("total mismatch" in warning for warning in parsed.warnings)


def test_invoice_lines_after_docket_total_are_ignored():
    text = "02/01/24 08:30 10.00\nDocket Total: £10.00\n03/01/24 08:30 20.00"

    lines = extract_invoice(text.encode("utf-8"), "invoice.txt")

    assert [line.date for line in lines] == [date(2024, 1, 2)]


def test_tabular_runsheet_via_pandas():
    content = b"Date,Consignments\n02/01/2024,5\n03/01/2024,4\n02/01/2024,1\n"

    assert extract_runsheet(content, "runsheet.csv") == {date(2024, 1, 2): 6, date(2024, 1, 3): 4}


def test_tabular_runsheet_without_count_column_counts_rows():
    content = b"Delivery Date,Consignment\n2024-01-02,1234567\n2024-01-02,7654321\n"

    assert extract_runsheet(content, "runsheet.csv") == {date(2024, 1, 2): 2}


def test_tabular_invoice_drops_undated_and_negative_rows():
    content = (
        b"Date,Amount,Service\n"
        b"02/01/2024,45.50,Standard\n"
        b"02/01/2024,12.00,Pick-Up\n"
        b",10.00,Standard\n"
        b"03/01/2024,-5.00,Standard\n"
    )

    parsed = read_invoice(content, "invoice.csv")

    assert [line.amount for line in parsed.lines] == [Money.of("45.50"), Money.of("12.00")]
    assert parsed.lines[1].is_pickup
    assert parsed.rejected == 2


def test_tabular_invoice_needs_amount_column():
    with pytest.raises(ParseError):
        read_invoice(b"Date,Reference\n02/01/2024,abc\n", "invoice.csv")


def test_sanitize_records():
    day = date(2024, 1, 2)

    result = sanitize_records(
        counts=[RawCount(None, 3), RawCount(day, -1), RawCount(day, 2), RawCount(day, 3)],
        payments=[RawPayment(day, Decimal("-1.00")), RawPayment(None, Decimal("4.00")), RawPayment(day, Decimal("4.00"))],
    )

    assert result.counts == {day: 5}
    assert [line.amount for line in result.lines] == [Money.of("4.00")]
    assert result.warning_count == 4


def test_extract_batch_merges_files_and_reports_unknown():
    documents = [
        make_document("runsheet.txt", RUNSHEET_TEXT),
        make_document("invoice.txt", INVOICE_TEXT),
        make_document("notes.txt", "hello"),
    ]
    seen = []

    batch = DocumentExtractor().extract_batch(documents, on_file=lambda i, n, name: seen.append((i, n, name)))

    assert seen == [(1, 3, "runsheet.txt"), (2, 3, "invoice.txt"), (3, 3, "notes.txt")]
    assert batch.consignments == {date(2024, 1, 2): 2, date(2024, 1, 3): 1}
    assert len(batch.invoice_lines) == 2
    assert batch.dates == [date(2024, 1, 2), date(2024, 1, 3)]
    assert [outcome.filename for outcome in batch.iter_failures()] == ["notes.txt"]
    assert any("unrecognised" in warning for warning in batch.warnings)


def test_extract_batch_without_usable_files_raises():
    with pytest.raises(NoDataExtractedError) as info:
        DocumentExtractor().extract_batch([make_document("notes.txt", "hello")])

    assert info.value.warnings


class BrokenTextExtractor:
    def extract_text(self, content: bytes, filename: str) -> str:
        raise RuntimeError("EOF marker not found")


def test_tabular_invoice_reports_unreadable_amounts():
    parsed = read_invoice(b"Date,Amount\n02/01/2024,45.00\n03/01/2024,abc\n", "invoice.csv")

    assert [line.amount for line in parsed.lines] == [Money.of("45.00")]
    assert parsed.rejected == 1
    assert any("row 3" in warning and "'abc'" in warning for warning in parsed.warnings)


def test_tabular_runsheet_reports_unreadable_counts():
    parsed = read_runsheet(b"Date,Consignments\n02/01/2024,5\n03/01/2024,lots\n", "runsheet.csv")

    assert parsed.counts == {date(2024, 1, 2): 5}
    assert parsed.rejected == 1
    assert any("unreadable consignment count 'lots'" in warning for warning in parsed.warnings)
    assert not any("undated" in warning.lower() for warning in parsed.warnings)


def test_count_column_match_needs_whole_word():
    content = b"Date,Account No\n02/01/2024,991\n02/01/2024,992\n"

    assert extract_runsheet(content, "runsheet.csv") == {date(2024, 1, 2): 2}


def test_text_extractor_failure_becomes_parse_error():
    with pytest.raises(ParseError) as info:
        decode_text(b"%PDF-1.4", "invoice.pdf", BrokenTextExtractor())

    assert "text extraction failed" in info.value.reason


def test_failing_pdf_does_not_sink_the_batch():
    documents = [
        make_document("runsheet.txt", RUNSHEET_TEXT),
        UploadedDocument("invoice_bad.pdf", b"%PDF-1.4 truncated", 1700000000000),
    ]

    batch = DocumentExtractor(BrokenTextExtractor()).extract_batch(documents)

    assert batch.consignments == {date(2024, 1, 2): 2, date(2024, 1, 3): 1}
    failures = list(batch.iter_failures())
    assert [outcome.filename for outcome in failures] == ["invoice_bad.pdf"]
    assert "text extraction failed" in failures[0].error


def test_pdf_extractor_rejects_non_pdf_bytes():
    documents = [
        make_document("runsheet.txt", RUNSHEET_TEXT),
        UploadedDocument("invoice_0042.pdf", b"not a pdf at all", 1700000000000),
    ]

    batch = DocumentExtractor(PdfTextExtractor()).extract_batch(documents)

    assert [outcome.filename for outcome in batch.iter_failures()] == ["invoice_0042.pdf"]


def test_pdf_extractor_joins_pages_with_form_feed(monkeypatch):
    class FakePage:
        def __init__(self, text):
            self.text = text

        def extract_text(self):
            return self.text

    class FakeReader:
        def __init__(self, stream):
            self.pages = [FakePage("Date: 02/01/2024\n1 1234567 Delivery"), FakePage(None), FakePage("end")]

    monkeypatch.setattr(pdf.PyPDF2, "PdfReader", FakeReader)

    text = PdfTextExtractor().extract_text(b"%PDF-1.4", "runsheet.pdf")

    assert text.split("\f") == ["Date: 02/01/2024\n1 1234567 Delivery", "", "end"]
