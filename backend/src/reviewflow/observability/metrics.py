"""Prometheus metrics for ReviewFlow.

Labels are kept to closed vocabularies (endpoint, outcome, action); tenant
and file ids never become label values.
"""

from prometheus_client import Counter, Histogram

# Upload metrics
uploads_total = Counter(
    "reviewflow_uploads_total",
    "Upload broker operations",
    ["operation", "outcome"]  # operation: request|confirm|direct, outcome: success|rejected|incomplete|error
)

upload_size_bytes = Histogram(
    "reviewflow_upload_size_bytes",
    "Size of confirmed uploads in bytes",
    buckets=[1024, 64 * 1024, 1024 ** 2, 10 * 1024 ** 2, 50 * 1024 ** 2, 100 * 1024 ** 2]
)

validation_warnings_total = Counter(
    "reviewflow_validation_warnings_total",
    "Uploads accepted with validation warnings"
)

# Workflow metrics
workflow_transitions_total = Counter(
    "reviewflow_workflow_transitions_total",
    "Workflow actions applied",
    ["action", "outcome"]  # outcome: success|invalid|busy|error
)

workflow_busy_total = Counter(
    "reviewflow_workflow_busy_total",
    "Workflow actions rejected because the file was locked by another transition"
)

workflow_transition_duration_seconds = Histogram(
    "reviewflow_workflow_transition_duration_seconds",
    "Time spent applying a workflow action",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)
