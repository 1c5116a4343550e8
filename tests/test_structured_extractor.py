from types import SimpleNamespace

import anthropic
import httpx
import pytest

from invoicer.errors import ExtractionServiceError
from invoicer.structured import AnthropicExtractor


class FakeMessages:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type='text', text=self.reply)])


def _extractor(reply=None, error=None):
    messages = FakeMessages(reply, error)
    return AnthropicExtractor(model='test-model', max_tokens=256, client=SimpleNamespace(messages=messages)), messages


def test_extracts_fields_from_reply():
    extractor, messages = _extractor('{"Invoice Number": "INV-9", "Vendor Name": "Acme Inc"}')
    fields = extractor.extract('Invoice INV-9 from Acme Inc')
    assert fields['Invoice Number'] == 'INV-9'
    assert fields['Vendor Name'] == 'Acme Inc'
    assert fields['Due Date'] == ''

    call = messages.calls[0]
    assert call['model'] == 'test-model'
    assert call['max_tokens'] == 256
    assert 'Invoice INV-9 from Acme Inc' in call['messages'][0]['content']


def test_malformed_reply_is_an_extraction_error():
    extractor, _ = _extractor('Sure! Here is the data you asked for.')
    with pytest.raises(ExtractionServiceError):
        extractor.extract('text')


def test_api_error_is_an_extraction_error():
    request = httpx.Request('POST', 'https://api.anthropic.com/v1/messages')
    extractor, _ = _extractor(error=anthropic.APIConnectionError(request=request))
    with pytest.raises(ExtractionServiceError):
        extractor.extract('text')


def test_missing_api_key_is_an_extraction_error():
    with pytest.raises(ExtractionServiceError):
        AnthropicExtractor(api_key='').extract('text')
