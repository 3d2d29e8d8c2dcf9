import os
import sys
import asyncio
from datetime import date, timedelta

# Required to import core and models when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import AsyncSessionLocal, create_all
from models import Customer, Driver, Reservation, Vehicle


async def seed():
    await create_all()
    today = date.today()

    async with AsyncSessionLocal() as db:
        vehicles = [
            Vehicle(license_plate="VX-123-B", brand="Volkswagen", model="Transporter", current_mileage=48210, current_fuel_level="Full"),
            Vehicle(license_plate="GH-456-K", brand="Ford", model="Transit", current_mileage=91544, current_fuel_level="3/4"),
            Vehicle(license_plate="TR-789-P", brand="Renault", model="Master", current_mileage=12030, current_fuel_level="1/2"),
        ]
        db.add_all(vehicles)

        customer = Customer(name="Bakkerij de Vries", email="info@devries.example", phone="+31 20 555 0101")
        db.add(customer)
        await db.flush()

        driver = Driver(customer_id=customer.id, name="Jan de Vries", license_number="NL1234567")
        db.add(driver)
        await db.flush()

        db.add_all([
            Reservation(
                type="standard",
                vehicle_id=vehicles[0].id,
                customer_id=customer.id,
                driver_id=driver.id,
                start_date=today + timedelta(days=2),
                end_date=today + timedelta(days=9),
                status="confirmed",
            ),
            Reservation(
                type="standard",
                vehicle_id=vehicles[1].id,
                customer_id=customer.id,
                start_date=today + timedelta(days=5),
                end_date=None,
                status="pending",
                notes="Open-ended rental",
            ),
        ])

        await db.commit()
        print("Seed data inserted successfully")

if __name__ == "__main__":
    asyncio.run(seed())
