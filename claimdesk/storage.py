"""
Local file storage for claim documents and photos.

Files live under a root directory keyed by their storage path. Temporary
download links are HMAC-SHA256 signed and verified by the API layer.
"""

import hashlib
import hmac
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from .logging_conf import get_logger
from .error_handler import NotFoundError, ValidationError

logger = get_logger(__name__)


class FileStorage:
    """Directory-backed replacement for a storage bucket."""

    def __init__(
        self,
        root: Optional[Path] = None,
        signing_key: Optional[bytes] = None,
        public_base_url: Optional[str] = None
    ):
        from .settings import settings

        self.root = Path(root or settings.global_config.storage_root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or settings.global_config.public_base_url).rstrip("/")
        self._signing_key = signing_key or self._load_signing_key(settings.config_dir)

    @staticmethod
    def _load_signing_key(config_dir: Path) -> bytes:
        key_file = config_dir / ".url_signing_key"
        if key_file.exists():
            return key_file.read_bytes()
        key = hashlib.sha256(str(time.time_ns()).encode() + str(config_dir).encode()).digest()
        key_file.write_bytes(key)
        key_file.chmod(0o600)
        return key

    def _resolve(self, path: str) -> Path:
        """Map a storage path onto disk, refusing anything outside the root."""
        if not path or path.startswith("/"):
            raise ValidationError("path", path, "Storage path must be relative")
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValidationError("path", path, "Storage path escapes the storage root")
        return target

    def save(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Stored file", path=path, size=len(data))
        return path

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValidationError:
            return False

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError("file", path)
        return target.read_bytes()

    def _sign(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def create_signed_url(self, path: str, expires_in: int = 3600, now: Optional[float] = None) -> str:
        """Create a download URL valid for ``expires_in`` seconds."""
        expires = int((now if now is not None else time.time()) + expires_in)
        query = urlencode({"expires": expires, "signature": self._sign(path, expires)})
        return f"{self.public_base_url}/api/files/{quote(path)}?{query}"

    def verify_signature(self, path: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        """Check a signed URL's signature and expiry."""
        current = now if now is not None else time.time()
        if int(expires) < current:
            return False
        return hmac.compare_digest(self._sign(path, int(expires)), signature or "")
