import hashlib
from typing import Optional


def mask_secret(text: str, secret: Optional[str]) -> str:
    """Replace every occurrence of ``secret`` in ``text`` with its preview."""
    if not secret or not text:
        return text
    return text.replace(secret, secret_preview(secret))


def secret_preview(secret: Optional[str]) -> str:
    if not secret:
        return "<empty>"
    # Short secrets would leak through a prefix
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}****"


def secret_fingerprint(secret: Optional[str]) -> str:
    """Provide a stable, low-leak credential identifier for logs."""
    if not secret:
        return "<empty>"
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]
    return f"len={len(secret)} sha256={digest} preview={secret_preview(secret)}"
