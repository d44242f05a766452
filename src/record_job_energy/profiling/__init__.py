"""Zone scanning, sampling, step artifacts, barrier and aggregation."""
