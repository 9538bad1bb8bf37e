"""
Demo Seed Data (async, idempotent)
- Institutes, Labs
- Users for every role
- Equipment with an initial status row
Run:  python scripts/seed/demo_data.py
"""

import os, sys
import asyncio
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from labwatch.core.database import async_session_maker, engine
from labwatch.core.security import create_access_token
from labwatch.models.base import Base
from labwatch.models.organization.institute import Institute
from labwatch.models.organization.lab import Lab
from labwatch.models.auth.user import User
from labwatch.models.equipment.equipment import Equipment
from labwatch.models.equipment.equipment_status import EquipmentStatus
from labwatch.models.shared.enums import Role, EquipmentStatusType
from labwatch.utils.date_time_serializer import utcnow

# ----------------------------------------------------------------------
# SEED DATA
# ----------------------------------------------------------------------

INSTITUTES_SEED = [
    {"code": "GPT-DHK", "name": "Government Polytechnic Dhaka", "address": "Tejgaon, Dhaka"},
    {"code": "TTC-CTG", "name": "Technical Training Centre Chattogram", "address": "Nasirabad, Chattogram"},
]

# (institute code, department, lab name)
LABS_SEED = [
    ("GPT-DHK", "Mechanical", "Machine Shop"),
    ("GPT-DHK", "Electrical", "Power Electronics Lab"),
    ("TTC-CTG", "Mechanical", "Welding Bay"),
]

# (email, first, last, role, lab name or None)
USERS_SEED = [
    ("policy@labwatch.local", "Nasrin", "Akter", Role.POLICY_MAKER, None),
    ("manager.machine@labwatch.local", "Rafiq", "Hasan", Role.LAB_MANAGER, "Machine Shop"),
    ("manager.power@labwatch.local", "Sadia", "Islam", Role.LAB_MANAGER, "Power Electronics Lab"),
    ("trainer.machine@labwatch.local", "Tanvir", "Ahmed", Role.TRAINER, "Machine Shop"),
    ("manager.welding@labwatch.local", "Mitu", "Das", Role.LAB_MANAGER, "Welding Bay"),
]

# (external id, name, type, lab name)
EQUIPMENT_SEED = [
    ("LATHE-001", "CNC Lathe", "lathe", "Machine Shop"),
    ("MILL-002", "Vertical Milling Machine", "milling", "Machine Shop"),
    ("PSU-010", "Bench Power Supply", "power_supply", "Power Electronics Lab"),
    ("WELD-100", "MIG Welder", "welder", "Welding Bay"),
]

# ----------------------------------------------------------------------
# ASYNC HELPERS (idempotent upserts)
# ----------------------------------------------------------------------

async def get_or_create(db: AsyncSession, model, lookup: dict, defaults: dict = None):
    result = await db.execute(select(model).filter_by(**lookup))
    obj = result.scalar_one_or_none()
    if obj:
        return obj
    obj = model(**lookup, **(defaults or {}))
    db.add(obj)
    await db.flush()
    return obj

# ----------------------------------------------------------------------
# MAIN ASYNC SEED LOGIC
# ----------------------------------------------------------------------

async def seed(db: AsyncSession):
    # 1) Institutes
    institutes = {}
    for data in INSTITUTES_SEED:
        institutes[data["code"]] = await get_or_create(
            db, Institute, {"code": data["code"]}, {"name": data["name"], "address": data["address"]}
        )
    await db.commit()
    print(f"✓ Institutes ready: {len(institutes)}")

    # 2) Labs
    labs = {}
    for code, department, name in LABS_SEED:
        labs[name] = await get_or_create(
            db, Lab, {"name": name, "institute_id": institutes[code].id}, {"department": department}
        )
    await db.commit()
    print(f"✓ Labs ready: {len(labs)}")

    # 3) Users
    users = []
    for email, first, last, role, lab_name in USERS_SEED:
        lab = labs.get(lab_name)
        users.append(await get_or_create(db, User, {"email": email}, {
            "first_name": first,
            "last_name": last,
            "role": role,
            "institute_id": lab.institute_id if lab else None,
            "department": lab.department if lab else None,
            "lab_id": lab.id if lab else None,
        }))
    await db.commit()
    print(f"✓ Users ready: {len(users)}")

    # 4) Equipment + status
    for external_id, name, equipment_type, lab_name in EQUIPMENT_SEED:
        lab = labs[lab_name]
        equipment = await get_or_create(db, Equipment, {"equipment_id": external_id}, {
            "name": name,
            "equipment_type": equipment_type,
            "institute_id": lab.institute_id,
            "department": lab.department,
            "lab_id": lab.id,
        })
        await get_or_create(db, EquipmentStatus, {"equipment_id": equipment.id}, {
            "status": EquipmentStatusType.OPERATIONAL,
            "last_used_at": utcnow(),
        })
    await db.commit()
    print(f"✓ Equipment ready: {len(EQUIPMENT_SEED)}")

    return users

# ----------------------------------------------------------------------
# ASYNC ENTRY POINT
# ----------------------------------------------------------------------

async def main():
    # Create tables (safe if already created)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as db:
        try:
            users = await seed(db)
            print("✅ Demo seed completed successfully!")
        except Exception as ex:
            await db.rollback()
            print(f"❌ Seed failed: {ex}")
            raise

    print("\nDevelopment tokens:")
    for user in users:
        print(f"  {user.email} ({user.role.value}): {create_access_token(user.id)}")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
