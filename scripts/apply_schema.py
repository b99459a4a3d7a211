import asyncio

from scorebook.database import apply_schema, close_db, init_db


async def main():
    print("Applying schema...")
    pool = await init_db()
    if not pool:
        print("❌ No database configured (set DATABASE_URL).")
        return

    try:
        await apply_schema(pool)
        print("✅ Schema applied successfully.")
    finally:
        await close_db()

if __name__ == "__main__":
    asyncio.run(main())
