"""Create the BigQuery dataset and the logs, analyzed_logs, alerts and cluster_explanations tables."""

from __future__ import annotations

import sys

from google.cloud import bigquery
from google.cloud.exceptions import GoogleCloudError

from config.settings import get_settings

LOGS_SCHEMA = [
    bigquery.SchemaField("log_id", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("timestamp", "TIMESTAMP", mode="REQUIRED"),
    bigquery.SchemaField("level", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("message", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("service", "STRING"),
    bigquery.SchemaField("user_id", "STRING"),
    bigquery.SchemaField("session_id", "STRING"),
    bigquery.SchemaField("request_id", "STRING"),
    bigquery.SchemaField("endpoint", "STRING"),
    bigquery.SchemaField("error_code", "STRING"),
    bigquery.SchemaField("error_message", "STRING"),
    bigquery.SchemaField("response_time", "FLOAT"),
    bigquery.SchemaField("city", "STRING"),
    bigquery.SchemaField("details", "STRING"),
    bigquery.SchemaField("anomaly_detected", "BOOL"),
]

ANALYZED_LOGS_SCHEMA = [
    bigquery.SchemaField("original_log_id", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("timestamp", "TIMESTAMP", mode="REQUIRED"),
    bigquery.SchemaField("level", "STRING"),
    bigquery.SchemaField("message", "STRING"),
    bigquery.SchemaField("service", "STRING"),
    bigquery.SchemaField("user_id", "STRING"),
    bigquery.SchemaField("session_id", "STRING"),
    bigquery.SchemaField("request_id", "STRING"),
    bigquery.SchemaField("endpoint", "STRING"),
    bigquery.SchemaField("error_code", "STRING"),
    bigquery.SchemaField("city", "STRING"),
    bigquery.SchemaField("anomaly_detected", "BOOL"),
    bigquery.SchemaField("anomaly_score", "FLOAT"),
    bigquery.SchemaField("severity", "STRING"),
    bigquery.SchemaField("category", "STRING"),
    bigquery.SchemaField("root_cause", "STRING"),
    bigquery.SchemaField("ai_explanation", "STRING"),
    bigquery.SchemaField("suggested_fix", "STRING"),
    bigquery.SchemaField("is_explained", "BOOL"),
    bigquery.SchemaField("cluster_id", "STRING"),
    bigquery.SchemaField("cluster_name", "STRING"),
    bigquery.SchemaField("similar_logs_count", "INTEGER"),
    bigquery.SchemaField("analysis_method", "STRING"),
    bigquery.SchemaField("analyzed_at", "TIMESTAMP"),
    bigquery.SchemaField("ai_model", "STRING"),
]

ALERTS_SCHEMA = [
    bigquery.SchemaField("alert_id", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("type", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("severity", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("title", "STRING"),
    bigquery.SchemaField("description", "STRING"),
    bigquery.SchemaField("affected_logs", "INTEGER"),
    bigquery.SchemaField("affected_users", "INTEGER"),
    bigquery.SchemaField("affected_endpoints", "STRING"),
    bigquery.SchemaField("top_errors", "STRING"),
    bigquery.SchemaField("suggested_action", "STRING"),
    bigquery.SchemaField("runbook", "STRING"),
    bigquery.SchemaField("estimated_revenue_loss", "FLOAT"),
    bigquery.SchemaField("status", "STRING"),
    bigquery.SchemaField("acknowledged_at", "TIMESTAMP"),
    bigquery.SchemaField("acknowledged_by", "STRING"),
    bigquery.SchemaField("resolved_at", "TIMESTAMP"),
    bigquery.SchemaField("resolved_by", "STRING"),
    bigquery.SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
    bigquery.SchemaField("metadata", "STRING"),
    bigquery.SchemaField("version_at", "TIMESTAMP", mode="REQUIRED"),
]

CLUSTER_EXPLANATIONS_SCHEMA = [
    bigquery.SchemaField("cluster_name", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("explanation", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("explained_at", "TIMESTAMP", mode="REQUIRED"),
]


def create_schema() -> None:
    settings = get_settings()

    if not settings.gcp_project_id:
        print("GCP_PROJECT_ID is not set. Define it in .env")
        sys.exit(1)

    client = bigquery.Client(project=settings.gcp_project_id)
    dataset_id = f"{settings.gcp_project_id}.{settings.bq_dataset}"

    dataset = bigquery.Dataset(dataset_id)
    dataset.location = "US"
    try:
        client.create_dataset(dataset, exists_ok=True)
        print(f"Dataset: {dataset_id}")
    except GoogleCloudError as e:
        print(f"Failed to create dataset: {e}")
        sys.exit(1)

    tables = [
        (settings.bq_logs_table_id, LOGS_SCHEMA, "timestamp"),
        (settings.bq_analyzed_table_id, ANALYZED_LOGS_SCHEMA, "timestamp"),
        (settings.bq_alerts_table_id, ALERTS_SCHEMA, "created_at"),
        (settings.bq_explanations_table_id, CLUSTER_EXPLANATIONS_SCHEMA, "explained_at"),
    ]

    for table_id, schema, partition_field in tables:
        table = bigquery.Table(table_id, schema=schema)
        table.time_partitioning = bigquery.TimePartitioning(field=partition_field)
        try:
            client.create_table(table, exists_ok=True)
            print(f"Table: {table_id}")
        except GoogleCloudError as e:
            print(f"Failed to create table {table_id}: {e}")
            sys.exit(1)

    print("\nSchema ready.")


if __name__ == "__main__":
    create_schema()
