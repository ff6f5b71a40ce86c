"""Per-dimension analysis tools.

``base`` holds the generic model-backed tool; ``dimensions`` registers the
built-in SQL dimensions (performance, security, standards).
"""
