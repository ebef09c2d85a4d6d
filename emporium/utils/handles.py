import re

def generate_handle(title: str) -> str:
    """URL handle from a title: lowercase, alphanumerics and single dashes."""
    handle = (title or "").lower()
    handle = re.sub(r"[^a-z0-9\s-]", "", handle)
    handle = re.sub(r"\s+", "-", handle)
    handle = re.sub(r"-+", "-", handle)
    return handle.strip("-")[:255]
