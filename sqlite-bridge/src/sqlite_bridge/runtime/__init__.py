"""Device runtime helpers: the async process executor plus per-platform
controllers and scanners."""
