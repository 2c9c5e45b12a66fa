"""
Report File Store
Decodes base64 report PDFs and writes them under REPORTS_DIR
"""
import base64
import binascii
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Dict, Optional, Union

from .. import config

logger = logging.getLogger(__name__)

_writer = ThreadPoolExecutor(max_workers=2, thread_name_prefix="report-writer")

DATA_URI_PREFIX = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)


def decode_report(data: str) -> bytes:
    """Raises ValueError on anything that is not valid base64."""
    payload = DATA_URI_PREFIX.sub("", data.strip())
    payload = re.sub(r"\s+", "", payload)
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 report payload: {e}") from e
    if not decoded:
        raise ValueError("empty report payload")
    return decoded


class ReportFileStore:
    """Local filesystem store; writes are bounded by `timeout` seconds."""

    def __init__(self, root: Union[str, Path], timeout: float = 10.0):
        self.root = Path(root)
        self.timeout = timeout

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def save_base64(self, data: str, stem: str) -> Optional[Dict[str, Union[str, int]]]:
        """
        Decode and persist one report.

        RETURNS:
            {"pdf_path", "file_size", "file_name"} or None when the payload
            is undecodable or the write failed/timed out
        """
        try:
            content = decode_report(data)
        except ValueError as e:
            logger.warning(f"⚠️ Skipping report file for {stem}: {e}")
            return None

        safe_stem = re.sub(r"[^A-Za-z0-9_.-]+", "_", stem) or "report"
        file_name = f"report_{safe_stem}.pdf"
        path = self.root / file_name

        future = _writer.submit(self._write, path, content)
        try:
            future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.error(f"❌ Report write timed out after {self.timeout}s: {path}")
            return None
        except OSError as e:
            logger.error(f"❌ Report write failed for {path}: {e}")
            return None

        logger.info(f"💾 Stored report file {file_name} ({len(content)} bytes)")
        return {"pdf_path": str(path), "file_size": len(content), "file_name": file_name}


def default_store() -> ReportFileStore:
    return ReportFileStore(config.REPORTS_DIR, timeout=config.FILE_WRITE_TIMEOUT)
