"""HTTP backend for camera resection."""
