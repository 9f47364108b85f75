"""Settings, S3 client, document store and shared helpers."""
