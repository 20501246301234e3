"""
Seed a development database with a small fleet: machines, compressors with
maintenance schedules, stock items and workers. Prints an admin token for
calling the API locally.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from rigledger.db import Base, SessionLocal, engine
from rigledger.models.models import Machine, Compressor, InventoryItem, Worker
from rigledger.services import scheduler
from rigledger.auth.security import create_access_token


MACHINES = [
    {"machine_number": "DRL-01", "machine_type": "Crawler drill", "rpm": 1200},
    {"machine_number": "DRL-02", "machine_type": "Crawler drill", "rpm": 640},
]

COMPRESSORS = [
    {"name": "CMP-01", "serial_number": "AC-55120", "rpm": 980},
    {"name": "CMP-02", "serial_number": "AC-55121", "rpm": 310},
]

MACHINE_SCHEDULE = [
    {"service_name": "Engine Oil", "cycle_length": 250, "last_service_rpm": 1000},
    {"service_name": "Hydraulic Filter", "cycle_length": 500, "last_service_rpm": 750},
]

COMPRESSOR_SCHEDULE = [
    {"service_name": "Compressor Service", "cycle_length": 250, "last_service_rpm": 750},
    {"service_name": "Engine Service", "cycle_length": 500, "last_service_rpm": 500},
]

ITEMS = [
    {"name": "Engine oil filter", "part_number": "EOF-220", "unit": "nos", "category": "service_item", "balance": 12},
    {"name": "Hydraulic hose", "part_number": "HH-34", "unit": "mtr", "category": "spare", "balance": 40},
    {"name": "Button bit 115mm", "part_number": "BB-115", "unit": "nos", "category": "drilling_tool", "balance": 6, "service_interval_rpm": 400},
    {"name": "Drill rod 3m", "part_number": "DR-3000", "unit": "nos", "category": "drilling_tool", "balance": 10, "service_interval_rpm": 1200},
]

WORKERS = [
    {"employee_code": "EMP-001", "name": "R. Kumar", "designation": "Operator", "daily_salary": 900, "advanced_amount": 5000},
    {"employee_code": "EMP-002", "name": "S. Das", "designation": "Operator", "daily_salary": 850, "advanced_amount": 0},
    {"employee_code": "EMP-003", "name": "M. Ali", "designation": "Helper", "daily_salary": 600, "advanced_amount": 1200},
]


def seed_fleet_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if db.query(Machine).count():
            print("Fleet already seeded, skipping")
            return

        compressors = []
        for data in COMPRESSORS:
            compressor = Compressor(**data)
            db.add(compressor)
            db.flush()
            scheduler.replace_schedule(db, compressor, COMPRESSOR_SCHEDULE)
            compressors.append(compressor)

        for data, compressor in zip(MACHINES, compressors):
            machine = Machine(**data, compressor_id=compressor.id)
            db.add(machine)
            db.flush()
            scheduler.replace_schedule(db, machine, MACHINE_SCHEDULE)

        for data in ITEMS:
            db.add(InventoryItem(**data, inward=data["balance"], outward=0))

        for data in WORKERS:
            db.add(Worker(**data))

        db.commit()
        print(f"Seeded {len(MACHINES)} machines, {len(COMPRESSORS)} compressors, {len(ITEMS)} items, {len(WORKERS)} workers")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_fleet_data()
    print("Admin token:")
    print(create_access_token("admin", roles=["admin"]))
