import pytest

from invoicer.errors import ExtractionServiceError, InsufficientCreditsError, OcrServiceError, UnsupportedFileError
from invoicer.extract import INVOICE_FIELDS
from invoicer.pipeline import ExtractionPipeline

from conftest import SAMPLE_TEXT, StaticExtractor, StaticOcrClient


def _pipeline(ctx, ocr_client=None, extractor=None):
    return ExtractionPipeline(
        ctx.ledger,
        ctx.error_log,
        ocr_client or StaticOcrClient(),
        extractor or StaticExtractor(fields={'Invoice Number': '77', 'Total Amount': '$10'}),
    )


def test_submit_charges_one_credit(ctx):
    record = _pipeline(ctx).submit(b'png', 'image/png', ctx.user_id)
    assert record.raw_text == SAMPLE_TEXT
    assert list(record.fields) == list(INVOICE_FIELDS)
    assert record.fields['Invoice Number'] == '77'
    assert record.fields['Total Amount'] == '10'
    assert record.fields['Due Date'] == ''
    assert ctx.ledger.get_balance(ctx.user_id) == 4
    assert ctx.ledger.history(ctx.user_id)[0].entry_type == 'charge'


def test_zero_balance_blocks_before_any_work(ctx):
    ctx.ledger.adjust(ctx.user_id, -5)
    ocr = StaticOcrClient()
    with pytest.raises(InsufficientCreditsError):
        _pipeline(ctx, ocr_client=ocr).submit(b'png', 'image/png', ctx.user_id)
    assert ocr.calls == []
    assert ctx.ledger.get_balance(ctx.user_id) == 0


@pytest.mark.parametrize('error', [OcrServiceError('Vision API error'), UnsupportedFileError()])
def test_ocr_failure_refunds_the_credit(ctx, error):
    pipeline = _pipeline(ctx, ocr_client=StaticOcrClient(error=error))
    with pytest.raises(type(error)):
        pipeline.submit(b'png', 'image/png', ctx.user_id)
    assert ctx.ledger.get_balance(ctx.user_id) == 5
    history = ctx.ledger.history(ctx.user_id)
    assert [e.entry_type for e in history] == ['refund', 'charge', 'grant']
    assert history[0].reference_id == history[1].reference_id

    entry = ctx.error_log.recent(ctx.user_id)[0]
    assert entry.context == 'File processing'
    assert entry.severity == 'error'
    assert error.logged is True


def test_unsupported_mime_type_is_refunded(ctx):
    with pytest.raises(UnsupportedFileError):
        _pipeline(ctx).submit(b'text', 'text/plain', ctx.user_id)
    assert ctx.ledger.get_balance(ctx.user_id) == 5


def test_extraction_failure_falls_back_without_refund(ctx):
    extractor = StaticExtractor(error=ExtractionServiceError('Extraction service error: overloaded'))
    record = _pipeline(ctx, extractor=extractor).submit(b'pdf', 'application/pdf', ctx.user_id)
    assert list(record.fields) == list(INVOICE_FIELDS)
    assert record.fields['Invoice Number'] == '10234'
    assert record.fields['Vendor Name'] == 'Acme Corporation'
    assert ctx.ledger.get_balance(ctx.user_id) == 4

    entry = ctx.error_log.recent(ctx.user_id)[0]
    assert entry.severity == 'warning'
    assert entry.context == 'Data extraction via language model'


def test_empty_ocr_text_still_returns_a_record(ctx):
    record = _pipeline(ctx, ocr_client=StaticOcrClient(text=''), extractor=StaticExtractor(
        error=ExtractionServiceError())).submit(b'png', 'image/png', ctx.user_id)
    assert record.raw_text == ''
    assert set(record.fields.values()) == {''}


def test_extractor_output_is_reduced_to_schema(ctx):
    extractor = StaticExtractor(fields={'Total Amount': '$10', 'Bogus': 'x'})
    record = _pipeline(ctx, extractor=extractor).submit(b'png', 'image/png', ctx.user_id)
    assert list(record.fields) == list(INVOICE_FIELDS)
    assert record.fields['Total Amount'] == '10'
    assert 'Bogus' not in record.fields


class ListExtractor(StaticExtractor):
    def extract(self, text):
        return ['not', 'a', 'mapping']


def test_non_mapping_extractor_output_uses_fallback(ctx):
    record = _pipeline(ctx, extractor=ListExtractor()).submit(b'png', 'image/png', ctx.user_id)
    assert record.fields['Invoice Number'] == '10234'
    assert ctx.error_log.recent(ctx.user_id)[0].severity == 'warning'
