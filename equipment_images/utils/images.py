"""Image file sniffing for manual uploads."""

from pathlib import Path

ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}

# Detected type -> extension written to disk
TYPE_EXTENSIONS = {'jpeg': '.jpg', 'png': '.png', 'gif': '.gif', 'webp': '.webp'}


def get_image_type(file_content: bytes) -> str | None:
    """Detect image type from magic bytes."""
    if len(file_content) < 12:
        return None
    # JPEG: starts with FF D8 FF
    if file_content[:3] == b'\xff\xd8\xff':
        return 'jpeg'
    # PNG: starts with 89 50 4E 47 0D 0A 1A 0A
    if file_content[:8] == b'\x89PNG\r\n\x1a\n':
        return 'png'
    # GIF: starts with GIF87a or GIF89a
    if file_content[:6] in (b'GIF87a', b'GIF89a'):
        return 'gif'
    # WebP: starts with RIFF....WEBP
    if file_content[:4] == b'RIFF' and file_content[8:12] == b'WEBP':
        return 'webp'
    return None


def validate_image(file_content: bytes, filename: str) -> bool:
    """Validate that file is actually an image."""
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        return False

    return get_image_type(file_content) in TYPE_EXTENSIONS
