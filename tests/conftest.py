import os

# Keep the OpenTelemetry provider out of test runs
os.environ.setdefault("DISABLE_TELEMETRY", "true")
