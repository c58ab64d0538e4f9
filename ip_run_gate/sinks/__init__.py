"""
Best-effort outbound sinks: webhooks and the BigQuery warehouse.
"""
