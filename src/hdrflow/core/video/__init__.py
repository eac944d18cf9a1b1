"""Video metadata probing and dynamic range format detection."""
