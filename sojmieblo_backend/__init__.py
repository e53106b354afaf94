"""Backend for Sojmieblo saved works.

This package keeps FastAPI route handlers thin:
- blob + metadata stores laid out as <root>/<id>.json, <root>/<id>.jpg, <root>/thumbs/<id>.jpg
- work registry with a read-through listing cache
- age-based eviction sweep
- image pipeline (data URL -> JPEG + thumbnail)

Work ids are timestamp-prefixed with a random suffix and are validated strictly
before they are turned into filesystem paths.
"""
