"""Document storage backends.

Stores return a URL from ``put`` and accept either a store path or a URL they
issued in ``get``. URLs pointing anywhere else are refused. Any storage error
surfaces as UpstreamFailure.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests

from ..contracts.exceptions import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)


def clean_path(path: str) -> str:
    """Normalize a store path and refuse traversal outside the store."""
    parts = PurePosixPath(path.strip("/")).parts
    if not parts or any(p in ("..", ".") for p in parts):
        raise ValidationError(f"Invalid document path: {path}", field="path")
    return "/".join(parts)


class DocumentStore(ABC):
    """Base class for document stores."""

    @abstractmethod
    def put(self, data: bytes, content_type: str, path: str) -> str:
        """Store ``data`` at ``path`` and return its URL."""
        pass

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Read a document by store path or by a URL this store issued."""
        pass

    @abstractmethod
    def owns(self, url: str) -> bool:
        """Whether ``url`` is a store path or a URL inside this store."""
        pass

    def check_url(self, url: str, field: str = "url") -> str:
        """Raise ValidationError unless ``url`` belongs to this store."""
        if not self.owns(url):
            raise ValidationError(f"{url} is not a document in this store", field=field)
        return url


class LocalDocumentStore(DocumentStore):
    """Filesystem store returning ``file://`` URLs under ``root``."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or Path.home() / ".dealer-contracts" / "documents").resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        if path.startswith("file://"):
            target = Path(url2pathname(unquote(urlparse(path).path))).resolve()
            if self.root not in target.parents:
                raise ValidationError(f"Document is outside the store: {path}", field="path")
            return target
        if "://" in path:
            raise ValidationError(f"Not a local document: {path}", field="path")
        return self.root / clean_path(path)

    def owns(self, url: str) -> bool:
        try:
            self._resolve(url)
        except ValidationError:
            return False
        return True

    def put(self, data: bytes, content_type: str, path: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as e:
            raise UpstreamFailure(f"Could not write {path}: {e}", service="document_store")

        logger.info(f"Stored {len(data)} bytes ({content_type}) at {target}")
        return target.as_uri()

    def get(self, path: str) -> bytes:
        try:
            source = self._resolve(path)
        except ValidationError as e:
            raise UpstreamFailure(str(e), service="document_store", status_code=403)
        try:
            return source.read_bytes()
        except FileNotFoundError:
            raise UpstreamFailure(f"Document not found: {path}", service="document_store", status_code=404)
        except OSError as e:
            raise UpstreamFailure(f"Could not read {path}: {e}", service="document_store")


class HttpDocumentStore(DocumentStore):
    """Blob service reachable over HTTP (``PUT``/``GET`` on ``{base_url}/{path}``).

    Only URLs under ``base_url`` are fetched, so the API key never leaves the
    blob service.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _url(self, path: str) -> str:
        prefix = f"{self.base_url}/"
        if path.startswith(prefix):
            path = path[len(prefix):]
        elif "://" in path:
            raise ValidationError(f"Document is outside the store: {path}", field="path")
        return prefix + clean_path(path)

    def owns(self, url: str) -> bool:
        try:
            self._url(url)
        except ValidationError:
            return False
        return True

    def put(self, data: bytes, content_type: str, path: str) -> str:
        url = self._url(path)
        headers = {**self._headers(), "Content-Type": content_type}
        try:
            response = requests.put(url, data=data, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise UpstreamFailure(f"Upload to {url} failed: {e}", service="document_store", status_code=status_code)

        try:
            stored_url = response.json().get("url")
        except ValueError:
            stored_url = None
        if stored_url and not self.owns(stored_url):
            logger.warning(f"Blob service returned a URL outside {self.base_url}; using {url}")
            stored_url = None
        logger.info(f"Uploaded {len(data)} bytes ({content_type}) to {url}")
        return stored_url or url

    def get(self, path: str) -> bytes:
        try:
            url = self._url(path)
        except ValidationError as e:
            raise UpstreamFailure(str(e), service="document_store", status_code=403)
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise UpstreamFailure(f"Download of {url} failed: {e}", service="document_store", status_code=status_code)
        return response.content
