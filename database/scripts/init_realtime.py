#!/usr/bin/env python3
"""
Realtime change feed initialization script.

Prerequisites:
- The platform database must contain the claims and documents tables

This script:
1. Creates the notify_portal_change() trigger function
2. Attaches an AFTER INSERT/UPDATE/DELETE trigger to claims and documents
3. Sends a test notification on each channel

Each notification carries {"table", "type", "record", "old_record"} where the
records only hold key columns, so payloads stay under the NOTIFY size limit.
"""

import asyncio
import asyncpg
import json
import os
import sys

# Configuration
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB = os.getenv("POSTGRES_DB", "postgres")
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")

CHANNELS = {
    "claims": os.getenv("CLAIMS_CHANNEL", "claims_changes"),
    "documents": os.getenv("DOCUMENTS_CHANNEL", "documents_changes"),
}

KEY_COLUMNS = [
    "id",
    "claim_id",
    "status",
    "car_company_status",
    "is_approved_by_car_company",
    "is_approved_by_insurance_company",
    "verified_by_car_company",
    "verified_by_insurance_company",
]

TRIGGER_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_portal_change() RETURNS trigger AS $$
DECLARE
    new_record jsonb;
    old_record jsonb;
BEGIN
    IF TG_OP <> 'DELETE' THEN
        SELECT jsonb_object_agg(key, value) INTO new_record
        FROM jsonb_each(to_jsonb(NEW))
        WHERE key = ANY(TG_ARGV[1]::text[]);
    END IF;
    IF TG_OP <> 'INSERT' THEN
        SELECT jsonb_object_agg(key, value) INTO old_record
        FROM jsonb_each(to_jsonb(OLD))
        WHERE key = ANY(TG_ARGV[1]::text[]);
    END IF;

    PERFORM pg_notify(
        TG_ARGV[0],
        jsonb_build_object(
            'table', TG_TABLE_NAME,
            'type', TG_OP,
            'record', new_record,
            'old_record', old_record
        )::text
    );
    RETURN COALESCE(NEW, OLD);
END;
$$ LANGUAGE plpgsql;
"""


def trigger_sql(table: str, channel: str) -> str:
    columns = "{" + ",".join(KEY_COLUMNS) + "}"
    return f"""
        DROP TRIGGER IF EXISTS {table}_portal_change ON {table};
        CREATE TRIGGER {table}_portal_change
        AFTER INSERT OR UPDATE OR DELETE ON {table}
        FOR EACH ROW EXECUTE FUNCTION notify_portal_change('{channel}', '{columns}');
    """


async def verify_channel(conn: asyncpg.Connection, channel: str) -> None:
    """Send a test notification and wait for it to come back."""
    received = asyncio.get_running_loop().create_future()

    def on_notify(connection, pid, notified_channel, payload):
        if not received.done():
            received.set_result(payload)

    await conn.add_listener(channel, on_notify)
    try:
        await conn.execute("SELECT pg_notify($1, $2)", channel, json.dumps({"type": "TEST"}))
        payload = await asyncio.wait_for(received, timeout=5)
        print(f"✓ Channel '{channel}' delivered: {payload}")
    finally:
        await conn.remove_listener(channel, on_notify)


async def main():
    print("=" * 80)
    print("🔔 REALTIME CHANGE FEED INITIALIZATION")
    print("=" * 80)

    try:
        conn = await asyncpg.connect(
            host=POSTGRES_HOST,
            port=POSTGRES_PORT,
            database=POSTGRES_DB,
            user=POSTGRES_USER,
            password=POSTGRES_PASSWORD
        )
        print("✓ Connected to PostgreSQL")

        await conn.execute(TRIGGER_FUNCTION)
        print("✓ Trigger function notify_portal_change() installed")

        for table, channel in CHANNELS.items():
            await conn.execute(trigger_sql(table, channel))
            print(f"✓ Trigger on '{table}' publishes to '{channel}'")

        for channel in CHANNELS.values():
            await verify_channel(conn, channel)

        await conn.close()

        print("\n" + "=" * 80)
        print("✅ REALTIME INITIALIZATION COMPLETED")
        print("=" * 80)

    except (OSError, asyncpg.PostgresError, asyncio.TimeoutError) as e:
        print(f"\n❌ INITIALIZATION FAILED: {str(e)}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
