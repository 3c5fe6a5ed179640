# app/database.py
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from datetime import datetime
from app.config import get_settings
from app.models.vehicle import VehicleStatus, VehicleType
from app.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

COLLECTIONS = ["drivers", "vehicles", "schedules", "payments", "history"]

class Database:
    client: AsyncIOMotorClient = None
    db = None

db = Database()

async def connect_to_mongo():
    db.client = AsyncIOMotorClient(settings.MONGODB_URI, tz_aware=False)
    db.db = db.client[settings.MONGODB_DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.MONGODB_DB_NAME}")

async def close_mongo_connection():
    if db.client:
        db.client.close()
        logger.info("Closed MongoDB connection")

async def get_database():
    return db.db

async def create_indexes(database):
    # Schedule indexes
    await database.schedules.create_index([("driver_id", ASCENDING), ("schedule_date", ASCENDING)])
    await database.schedules.create_index([("vehicle_id", ASCENDING), ("schedule_date", ASCENDING)])
    await database.schedules.create_index([("status", ASCENDING)])

    # Payment indexes
    await database.payments.create_index([("schedule_id", ASCENDING), ("payment_date", ASCENDING)])
    await database.payments.create_index([("status", ASCENDING)])
    await database.payments.create_index([("payment_type", ASCENDING)])

    # Registry indexes
    await database.drivers.create_index([("license_number", ASCENDING)])
    await database.vehicles.create_index([("license_plate", ASCENDING)])

    # History indexes
    await database.history.create_index([("entity_id", ASCENDING)])
    await database.history.create_index([("event_date", DESCENDING)])

async def init_db():
    if not db.client:
        await connect_to_mongo()
    try:
        # Create collections
        collections = await db.db.list_collection_names()
        for name in COLLECTIONS:
            if name not in collections:
                await db.db.create_collection(name)

        await create_indexes(db.db)

        logger.info("Database initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        return False

async def insert_sample_data():
    if not db.client:
        await connect_to_mongo()
    try:
        # Check if data already exists
        if await db.db.drivers.count_documents({}) > 0:
            logger.info("Sample data already exists. Skipping insertion.")
            return True

        hired = datetime(2024, 1, 1)

        # Sample drivers
        drivers = [
            {"first_name": "Awa", "last_name": "Kone", "phone_number": "+2250700000001",
             "license_number": "CI-DL-1001", "hire_date": hired, "departure_date": None, "current_vehicle_id": None},
            {"first_name": "Yao", "last_name": "Kouassi", "phone_number": "+2250700000002",
             "license_number": "CI-DL-1002", "hire_date": hired, "departure_date": None, "current_vehicle_id": None},
            {"first_name": "Moussa", "last_name": "Traore", "phone_number": "+2250700000003",
             "license_number": "CI-DL-1003", "hire_date": hired, "departure_date": None, "current_vehicle_id": None},
        ]
        await db.db.drivers.insert_many(drivers)

        # Sample vehicles
        vehicles = [
            {"type": VehicleType.TAXI.value, "license_plate": "1234-AB-01", "brand": "Toyota", "model": "Corolla",
             "status": VehicleStatus.ACTIVE.value, "current_driver_id": None, "daily_income_target": 25000},
            {"type": VehicleType.TAXI.value, "license_plate": "5678-CD-01", "brand": "Hyundai", "model": "Accent",
             "status": VehicleStatus.ACTIVE.value, "current_driver_id": None, "daily_income_target": 22000},
            {"type": VehicleType.MOTO.value, "license_plate": "9012-EF-01", "brand": "Yamaha", "model": "Crypton",
             "status": VehicleStatus.ACTIVE.value, "current_driver_id": None, "daily_income_target": 8000},
        ]
        await db.db.vehicles.insert_many(vehicles)

        logger.info("Sample data inserted successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to insert sample data: {e}", exc_info=True)
        return False
