"""Course progress tracking API."""
