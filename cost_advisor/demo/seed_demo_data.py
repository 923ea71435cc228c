# cost_advisor/demo/seed_demo_data.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from cost_advisor.storage.db import DEFAULT_DB_PATH
from cost_advisor.storage.models import Cost, MetricStats, Service, UsageRecord
from cost_advisor.storage.repository import UsageRepository, initialize_schema

DEMO_OWNER = "demo-owner"
DEMO_ACCOUNT = "123456789012"


def build_demo_records(now=None):
    now = now or datetime.now(timezone.utc)
    records = []
    for day in range(7):
        observed_at = now - timedelta(days=day, hours=1)
        records.append(UsageRecord(
            owner_id=DEMO_OWNER,
            account_ref=DEMO_ACCOUNT,
            resource_id="i-0demo0underused",
            service=Service.COMPUTE,
            region="us-east-1",
            observed_at=observed_at,
            metrics={"cpuUtilization": MetricStats(12.0, 35.0, 2.0, 24, "Percent")},
            cost=Cost(Decimal("100.00")),
            class_attributes={"instanceType": "m5.large"},
            runtime_status="running",
            resource_type="EC2 Instance"
        ))
        records.append(UsageRecord(
            owner_id=DEMO_OWNER,
            account_ref=DEMO_ACCOUNT,
            resource_id="demo-analytics-archive",
            service=Service.OBJECT_STORAGE,
            region="us-east-1",
            observed_at=observed_at,
            metrics={"storageSizeBytes": MetricStats(250 * 1024 ** 3, 250 * 1024 ** 3, 250 * 1024 ** 3, 1, "Bytes")},
            cost=Cost(Decimal("20.00")),
            class_attributes={"storageClass": "standard"},
            runtime_status="active",
            resource_type="S3 Bucket"
        ))
    return records


def seed(db_path=DEFAULT_DB_PATH, now=None):
    initialize_schema(db_path)
    records = build_demo_records(now)
    UsageRepository(db_path).insert_usage_records(records)
    return len(records)


if __name__ == "__main__":
    count = seed()
    print(f"Demo usage data inserted ({count} records)")
