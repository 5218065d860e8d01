# src/storagehub/services/account_importer.py

import re
import io
import csv
import json
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import httpx

from storagehub.core.config import settings
from storagehub.services.exceptions import ImportFailed

logger = logging.getLogger(__name__)

INT_PATTERN = re.compile(r"^[+-]?\d+$")
FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

def infer_value(raw: str) -> Any:
    """Type-infers one CSV cell: null, bool, int, float, JSON object/array, else string."""
    value = raw.strip()
    if value == "" or value.lower() == "null":
        return None
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    # 前导零的数字（邮编、电话等）保留为字符串
    if INT_PATTERN.match(value) and not re.match(r"^[+-]?0\d", value):
        return int(value)
    if FLOAT_PATTERN.match(value) and not re.match(r"^[+-]?0\d", value):
        return float(value)
    if value[0] in "{[":
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass
    return raw

class AccountImporter:
    """
    下载远程 CSV 文件并将其解析为 account 记录列表。
    首行为表头；空单元格不会出现在记录中。
    """
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.IMPORT_TIMEOUT,
        max_bytes: int = settings.IMPORT_MAX_BYTES,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def _stream(self, client: httpx.AsyncClient, url: str) -> bytes:
        chunks = []
        total = 0
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > self.max_bytes:
                    raise ImportFailed(f"Import file exceeds the {self.max_bytes} byte limit.")
                chunks.append(chunk)
        return b"".join(chunks)

    async def download(self, url: str) -> bytes:
        logger.info(f"[AccountImporter] Downloading {url}")
        try:
            if self.http_client is not None:
                return await self._stream(self.http_client, url)
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                return await self._stream(client, url)
        except httpx.HTTPStatusError as e:
            raise ImportFailed(f"HTTP error {e.response.status_code} downloading {e.request.url}")
        except httpx.RequestError as e:
            raise ImportFailed(f"Download failed for {e.request.url}: {e}")

    @staticmethod
    def decode(content: bytes) -> str:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ImportFailed(f"Import file is not valid UTF-8: {e}")

        # 兼容 base64 包装的 CSV
        if "," not in text and text.strip():
            try:
                decoded = base64.b64decode(text.strip(), validate=True).decode("utf-8-sig")
            except (binascii.Error, UnicodeDecodeError):
                return text
            if "," in decoded:
                return decoded
        return text

    @staticmethod
    def parse(text: str) -> List[Dict[str, Any]]:
        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames:
            raise ImportFailed("Import file has no header row.")
        headers = [h.strip() if h else h for h in reader.fieldnames]
        if any(not h for h in headers):
            raise ImportFailed("Import file has an empty column name in its header row.")
        reader.fieldnames = headers

        records = []
        try:
            for row in reader:
                if None in row:
                    raise ImportFailed(f"Row {reader.line_num} has more cells than the header.")
                record = {key: infer_value(value) for key, value in row.items() if value is not None}
                record = {key: value for key, value in record.items() if value is not None}
                if record:
                    records.append(record)
        except csv.Error as e:
            raise ImportFailed(f"Malformed CSV at line {reader.line_num}: {e}")
        return records

    async def fetch_accounts(self, url: str) -> List[Dict[str, Any]]:
        content = await self.download(url)
        records = self.parse(self.decode(content))
        logger.info(f"[AccountImporter] Parsed {len(records)} records from {url}")
        return records
