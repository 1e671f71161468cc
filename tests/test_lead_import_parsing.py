"""Unit tests for the lead import building blocks (no database)."""
import pytest

from app.crm.modules.lead_import.columns import FIELD_VARIATIONS, NOT_FOUND, find_column, infer_columns
from app.crm.modules.lead_import.parsers.csv import decode_csv_bytes, parse_csv
from app.crm.modules.lead_import.service import build_drafts, summarize_errors
from app.crm.modules.lead_import.utils import normalize_phone, split_full_name
from app.crm.modules.lead_import.validation import CustomerDraft, RowError, validate_row


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("9.18E+11", "918000000000"),
        ("1.2345678901E+10", "12345678901"),
        ("4.4E+2", "440"),
        ("2.5E+0", "3"),
        ("1E+28", "1" + "0" * 28),
        ("1E+30", "1" + "0" * 30),
        ("9.99E+40", "999" + "0" * 38),
        ("9.5E+0", "10"),
    ],
)
def test_normalize_phone_scientific_notation(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_phone_strips_formatting():
    assert normalize_phone("(555) 010-0199") == "5550100199"
    assert normalize_phone("+1 (555) 010-0199") == "+15550100199"
    assert normalize_phone("  ") == ""
    assert normalize_phone(None) == ""


def test_normalize_phone_keeps_only_leading_plus_and_truncates():
    assert normalize_phone("+1+2+3") == "+123"
    assert normalize_phone("12+34") == "1234"
    assert normalize_phone("1" * 30) == "1" * 20


def test_normalize_phone_non_numeric_with_e_falls_back_to_digits():
    assert normalize_phone("EXT 42") == "42"


def test_split_full_name():
    assert split_full_name("") == ("", "")
    assert split_full_name("   ") == ("", "")
    assert split_full_name("Cher") == ("Cher", "")
    assert split_full_name("  Mary   Ann  van Dyke ") == ("Mary", "Ann van Dyke")


def test_parse_csv_quoted_comma_and_escaped_quote():
    rows = parse_csv('name,email\n"Doe, ""Jr""",jr@example.com\n')
    assert rows == [["name", "email"], ['Doe, "Jr"', "jr@example.com"]]


def test_parse_csv_bom_crlf_and_blank_lines():
    text = decode_csv_bytes(b"\xef\xbb\xbfEmail,Name\r\n\r\na@example.com,Ann\r\n   \r\nb@example.com,Bob\r\n")
    assert parse_csv(text) == [["Email", "Name"], ["a@example.com", "Ann"], ["b@example.com", "Bob"]]


def test_parse_csv_newline_inside_quotes():
    rows = parse_csv('email,notes\na@example.com,"line one\nline two"\n')
    assert rows[1] == ["a@example.com", "line one\nline two"]


def test_parse_csv_unterminated_quote_consumes_rest():
    rows = parse_csv('email,notes\na@example.com,"never closed\nb@example.com,x\n')
    assert len(rows) == 2
    assert rows[1][0] == "a@example.com"
    assert rows[1][1].startswith("never closed")
    assert "b@example.com" in rows[1][1]


def test_parse_csv_unterminated_quote_longer_than_default_field_limit():
    tail = "x" * 200_000
    rows = parse_csv('email,notes\na@example.com,"never closed\n' + tail)
    assert len(rows) == 2
    assert rows[1][1] == "never closed\n" + tail


def test_build_drafts_keeps_very_long_quoted_notes():
    notes = "n" * 200_000
    drafts, errors = build_drafts(f'Name,Email,Notes\nAnn Lee,ann@example.com,"{notes}"\nBob Ray,bob@example.com,short\n')
    assert errors == []
    assert [d.email for d in drafts] == ["ann@example.com", "bob@example.com"]
    assert drafts[0].notes == notes


def test_find_column_tie_break_is_header_order():
    headers = ["phone number", "mobile"]
    assert find_column(headers, ["phone_no", "phone", "mobile"]) == 0


def test_find_column_variation_priority_beats_header_order():
    headers = ["mobile", "phone"]
    assert find_column(headers, ["phone", "mobile"]) == 1


def test_find_column_not_found_and_empty_headers():
    assert find_column(["", "zip"], ["email"]) == NOT_FOUND
    assert find_column([], ["email"]) == NOT_FOUND


def test_infer_columns_explicit_names():
    cols = infer_columns(["First Name", "Last Name", "E-mail Address", "Mobile", "Lead Source", "Comments", "Stage"])
    assert cols.first_name == 0
    assert cols.last_name == 1
    assert cols.full_name == NOT_FOUND
    assert cols.email == 2
    assert cols.phone == 3
    assert cols.source == 4
    assert cols.notes == 5
    assert cols.status == 6


def test_infer_columns_bare_name_is_full_name():
    cols = infer_columns(["Name", "Email"])
    assert cols.full_name == 0
    assert cols.first_name == NOT_FOUND
    assert cols.last_name == NOT_FOUND
    assert cols.email == 1


def test_default_variations_cover_every_field():
    assert set(FIELD_VARIATIONS) == {
        "full_name",
        "first_name",
        "last_name",
        "email",
        "phone",
        "source",
        "notes",
        "status",
    }


def test_validate_row_explicit_fields_override_full_name():
    cols = infer_columns(["Full Name", "First Name", "Email"])
    draft = validate_row(["John Smith", "Johnny", "JOHN@Example.com"], cols, 2)
    assert isinstance(draft, CustomerDraft)
    assert (draft.first_name, draft.last_name) == ("Johnny", "Smith")
    assert draft.email == "john@example.com"
    assert draft.source == "CSV Import"
    assert draft.status == "pending"
    assert draft.status_from_file is False


def test_validate_row_fills_unknown_for_missing_half():
    cols = infer_columns(["Name", "Email"])
    draft = validate_row(["Cher", "cher@example.com"], cols, 2)
    assert isinstance(draft, CustomerDraft)
    assert (draft.first_name, draft.last_name) == ("Cher", "Unknown")


def test_validate_row_errors():
    cols = infer_columns(["Name", "Email", "Status"])
    assert validate_row(["Ann Lee", "ann.example.com", ""], cols, 3) == RowError(3, "Invalid or missing email")
    assert validate_row(["", "x@example.com", ""], cols, 4) == RowError(4, "Missing name")
    assert validate_row(["Ann Lee", "ann@example.com", "Hot"], cols, 5) == RowError(5, "Invalid status 'hot'")


def test_validate_row_skips_empty_rows():
    cols = infer_columns(["Name", "Email"])
    assert validate_row(["", '""', "  "], cols, 2) is None


def test_validate_row_strips_quotes_and_lowercases_status():
    cols = infer_columns(["Name", "Email", "Status", "Notes"])
    draft = validate_row(['"Ann Lee"', ' "ann@example.com" ', "WON", ""], cols, 2)
    assert isinstance(draft, CustomerDraft)
    assert draft.email == "ann@example.com"
    assert draft.status == "won"
    assert draft.notes is None


def test_build_drafts_row_numbers_count_header_as_row_one():
    text = "Name,Email\nAnn Lee,ann@example.com\nBad Row,nope\n,\nBob Ray,bob@example.com\n,,\n"
    drafts, errors = build_drafts(text)
    assert [d.row_number for d in drafts] == [2, 5]
    assert [str(e) for e in errors] == ["Row 3: Invalid or missing email"]


def test_summarize_errors_caps_at_five():
    errors = [f"Row {i}: Missing name" for i in range(2, 10)]
    summary = summarize_errors(errors)
    assert summary.count("Missing name") == 5
    assert summary.endswith("...and 3 more")
