import pytest

from invoicer.errors import ExtractionServiceError
from invoicer.extract import INVOICE_FIELDS, build_prompt, fallback_extract, normalize_fields, parse_fields

from conftest import SAMPLE_TEXT


def test_fallback_finds_the_four_known_fields():
    fields = fallback_extract(SAMPLE_TEXT)
    assert fields['Invoice Number'] == '10234'
    assert fields['Invoice Date'] == '2024-03-01'
    assert fields['Total Amount'] == '1,160.00'
    assert fields['Vendor Name'] == 'Acme Corporation'


def test_fallback_always_returns_full_schema():
    fields = fallback_extract('nothing useful here')
    assert list(fields) == list(INVOICE_FIELDS)
    assert set(fields.values()) == {''}


@pytest.mark.parametrize('text', ['', None, 42])
def test_fallback_never_raises(text):
    assert fallback_extract(text) == {name: '' for name in INVOICE_FIELDS}


def test_invoice_prefix_with_dash():
    assert fallback_extract('INV-1001\nTotal: $25.00')['Invoice Number'] == '1001'


def test_subtotal_is_not_mistaken_for_total():
    fields = fallback_extract('Subtotal: 90.00\nTotal: 99.50')
    assert fields['Total Amount'] == '99.50'


def test_vendor_takes_first_line_with_company_suffix():
    fields = fallback_extract('Billed by Widget Company\nGlobex Inc.\n')
    assert fields['Vendor Name'] == 'Billed by Widget Company'


def test_parse_fields_normalizes_reply():
    reply = '{"Invoice Number": "A-17", "Total Amount": "KES 1,200.50", "Extra": "x"}'
    fields = parse_fields(reply)
    assert list(fields) == list(INVOICE_FIELDS)
    assert fields['Invoice Number'] == 'A-17'
    assert fields['Total Amount'] == '1,200.50'
    assert 'Extra' not in fields


@pytest.mark.parametrize('reply', ['not json', '[1, 2]', ''])
def test_parse_fields_rejects_malformed_reply(reply):
    with pytest.raises(ExtractionServiceError):
        parse_fields(reply)


def test_normalize_coerces_values_to_strings():
    fields = normalize_fields({'Tax Amount': 16, 'Description': None})
    assert fields['Tax Amount'] == '16'
    assert fields['Description'] == ''


def test_prompt_lists_every_field():
    prompt = build_prompt('Invoice 1')
    for name in INVOICE_FIELDS:
        assert f'"{name}"' in prompt
    assert prompt.rstrip().endswith('Respond with ONLY a valid JSON object, no other text.')


def test_fallback_on_short_receipt_fills_only_known_fields():
    text = 'INV-1001\nDate: 2024-01-05\nTotal: $250.00\nAcme Corporation\nThank you for your business'
    expected = {name: '' for name in INVOICE_FIELDS}
    expected.update({
        'Invoice Number': '1001',
        'Invoice Date': '2024-01-05',
        'Total Amount': '250.00',
        'Vendor Name': 'Acme Corporation',
    })
    assert fallback_extract(text) == expected
