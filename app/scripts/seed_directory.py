from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import Client, DirectorySessionLocal, Employee, SessionLocal, init_database
from policy import ensure_default_policy


SAMPLE_CLIENTS: List[str] = [
    "Harbor Logistics",
    "Northgate Mall",
    "Riverside Clinic",
]

SAMPLE_EMPLOYEES: List[Dict[str, str]] = [
    {"first_name": "Ana", "last_name": "Diaz", "position": "Guard", "email": "ana.diaz@example.com"},
    {"first_name": "Ben", "last_name": "Ito", "position": "Guard", "email": "ben.ito@example.com"},
    {"first_name": "Cleo", "last_name": "Park", "position": "Supervisor", "email": "cleo.park@example.com"},
    {"first_name": "Dev", "last_name": "Rao", "position": "Patrol", "email": "dev.rao@example.com"},
    {"first_name": "Elena", "last_name": "Voss", "position": "Patrol", "email": "elena.voss@example.com"},
    {"first_name": "Farid", "last_name": "Haddad", "position": "Supervisor", "email": "farid.haddad@example.com"},
]


def seed_directory() -> None:
    init_database()
    ensure_default_policy(SessionLocal)
    created = 0
    refreshed = 0
    with DirectorySessionLocal() as session:
        for business_name in SAMPLE_CLIENTS:
            stmt = select(Client).where(Client.business_name == business_name)
            if session.scalars(stmt).first() is None:
                session.add(Client(business_name=business_name))

        for entry in SAMPLE_EMPLOYEES:
            stmt = select(Employee).where(Employee.email == entry["email"])
            employee = session.scalars(stmt).first()
            if not employee:
                session.add(Employee(**entry))
                created += 1
            else:
                employee.position = entry["position"]
                employee.status = "active"
                refreshed += 1
        session.commit()
    print(f"Seed complete. Created {created} employees, refreshed {refreshed} profiles.")


if __name__ == "__main__":
    seed_directory()
