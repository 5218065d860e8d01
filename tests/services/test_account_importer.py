# tests/services/test_account_importer.py

import base64
import pytest
import httpx

from storagehub.services.account_importer import AccountImporter, infer_value
from storagehub.services.exceptions import ImportFailed

pytestmark = pytest.mark.asyncio

def importer_for(handler, **kwargs) -> AccountImporter:
    return AccountImporter(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)

class TestInferValue:

    @pytest.mark.parametrize("raw, expected", [
        ("42", 42),
        ("-3", -3),
        ("2.5", 2.5),
        ("1e3", 1000.0),
        ("true", True),
        ("FALSE", False),
        ("", None),
        ("null", None),
        ('{"a": 1}', {"a": 1}),
        ("[1, 2]", [1, 2]),
        ("{not json", "{not json"),
        ("007", "007"),
        ("hello", "hello"),
    ])
    async def test_cells_are_type_inferred(self, raw, expected):
        assert infer_value(raw) == expected

class TestAccountImporter:

    async def test_fetch_accounts_parses_header_and_rows(self):
        body = "\ufeffprofileKey, firstName ,age\npk-1,Ada,36\npk-2,,\n"
        importer = importer_for(lambda request: httpx.Response(200, content=body.encode("utf-8")))

        records = await importer.fetch_accounts("http://files.test/a.csv")

        assert records == [{"profileKey": "pk-1", "firstName": "Ada", "age": 36}, {"profileKey": "pk-2"}]

    async def test_base64_wrapped_csv_is_decoded(self):
        payload = base64.b64encode("profileKey,email\npk-1,a@b.c\n".encode("utf-8"))
        importer = importer_for(lambda request: httpx.Response(200, content=payload))

        assert await importer.fetch_accounts("http://files.test/a.b64") == [{"profileKey": "pk-1", "email": "a@b.c"}]

    async def test_http_error_raises_import_failed(self):
        importer = importer_for(lambda request: httpx.Response(404))
        with pytest.raises(ImportFailed, match="404"):
            await importer.fetch_accounts("http://files.test/missing.csv")

    async def test_transport_error_raises_import_failed(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)
        with pytest.raises(ImportFailed):
            await importer_for(refuse).fetch_accounts("http://files.test/a.csv")

    async def test_oversized_file_is_rejected(self):
        importer = importer_for(lambda request: httpx.Response(200, content=b"a,b\n" + b"1,2\n" * 100), max_bytes=64)
        with pytest.raises(ImportFailed, match="limit"):
            await importer.fetch_accounts("http://files.test/big.csv")

    async def test_rows_longer_than_header_are_rejected(self):
        importer = importer_for(lambda request: httpx.Response(200, content=b"profileKey\npk-1,extra\n"))
        with pytest.raises(ImportFailed):
            await importer.fetch_accounts("http://files.test/bad.csv")

    async def test_invalid_utf8_is_rejected(self):
        importer = importer_for(lambda request: httpx.Response(200, content=b"profileKey\n\xff\xfe\xfa\n"))
        with pytest.raises(ImportFailed):
            await importer.fetch_accounts("http://files.test/bad.csv")
