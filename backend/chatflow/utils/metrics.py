# /chatflow/utils/metrics.py

from prometheus_client import Counter, Histogram, Gauge

# This file defines all Prometheus metrics used for engine monitoring.
# Centralizing them here makes them easy to find and manage.

# Flow Metrics
flow_steps_counter = Counter('chatflow_flow_steps_total', 'Flow steps processed', ['step_type'])
flow_actions_counter = Counter('chatflow_flow_actions_total', 'Actions emitted to the transport', ['action'])
flow_errors_counter = Counter('chatflow_flow_errors_total', 'Fatal per-message flow errors', ['kind'])
flow_retries_counter = Counter('chatflow_flow_retries_total', 'Rejected inputs on validated steps', ['step_type'])
active_flows_gauge = Gauge('chatflow_active_flows', 'Identities with an active flow state')

# Matching Metrics
match_confidence_histogram = Histogram(
    'chatflow_match_confidence', 'Confidence of matched responses',
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.75, 0.8, 0.85, 0.9, 0.95, 1.0)
)
learning_events_counter = Counter('chatflow_learning_events_total', 'Learning attempts', ['status'])

# Performance Metrics
cache_operations = Counter('chatflow_cache_operations_total', 'Response cache operations', ['operation', 'status'])
