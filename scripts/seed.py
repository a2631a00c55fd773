"""
Demo Data Seeder

Creates one organization with the "Le Gourmet" restaurant: default roles,
an admin, a server and a cook, four tables and the main menu.
Run from project root: python scripts/seed.py [--reset]

Version: 1.0.0
"""

import argparse
import asyncio
import os
import sys
from decimal import Decimal

import bcrypt

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import select

from restaurant_ops import crud
from restaurant_ops.core.config import get_settings, setup_logging
from restaurant_ops.database import Base, create_engine_from_settings, create_session_factory, init_db
from restaurant_ops.models import Role

DEMO_PASSWORD = "password123"

USERS = [
    ("Super Admin", "admin@legourmet.bj", "Admin", "User", "+229 12 34 56 78"),
    ("Server", "server@legourmet.bj", "Server", "User", "+229 12 34 56 79"),
    ("Cook", "cook@legourmet.bj", "Cook", "User", "+229 12 34 56 80"),
]

TABLES = [("1", 2), ("2", 4), ("3", 6), ("4", 4)]

DISHES = [
    ("Poulet Braisé", "Poulet grillé avec sauce pimentée", "2500", "Plats Principaux"),
    ("Poisson Grillé", "Poisson frais grillé avec légumes", "3000", "Plats Principaux"),
    ("Riz Sauce Tomate", "Riz avec sauce tomate maison", "1500", "Plats Principaux"),
    ("Alloco", "Bananes plantains frites", "500", "Accompagnements"),
    ("Salade Verte", "Salade fraîche du jour", "800", "Entrées"),
    ("Jus de Bissap", "Jus de fleur d'hibiscus", "500", "Boissons"),
]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


async def seed(reset: bool = False) -> None:
    settings = get_settings()
    setup_logging(settings=settings)
    engine = create_engine_from_settings(settings)

    print("=" * 60)
    print("🌱 SEEDING DATABASE")
    print("=" * 60)

    if reset:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        print("✅ Dropped existing tables")
    await init_db(engine)

    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        async with session.begin():
            organization = await crud.create_organization(
                session, "Restaurant Group Demo", description="Demo organization for testing"
            )
            restaurant = await crud.create_restaurant(
                session,
                organization_id=organization.id,
                name="Le Gourmet",
                address="123 Rue de la Paix, Cotonou",
                phone="+229 12 34 56 78",
                email="contact@legourmet.bj",
                settings={"currency": settings.default_currency, "timezone": "Africa/Porto-Novo"},
            )
            print(f"✅ Created restaurant #{restaurant.id} with default roles")

            roles = (await session.execute(
                select(Role).where(Role.restaurant_id == restaurant.id)
            )).scalars().all()
            role_ids = {role.name: role.id for role in roles}

            password_hash = hash_password(DEMO_PASSWORD)
            for role_name, email, first_name, last_name, phone in USERS:
                user = await crud.create_user(
                    session,
                    restaurant_id=restaurant.id,
                    role_id=role_ids[role_name],
                    email=email,
                    password_hash=password_hash,
                    first_name=first_name,
                    last_name=last_name,
                    phone=phone,
                )
                print(f"   👤 {role_name:<12} user #{user.id}  {email}")

            for number, capacity in TABLES:
                await crud.create_table(session, restaurant.id, number, capacity)
            print(f"✅ Created {len(TABLES)} tables")

            menu = await crud.create_menu(
                session, restaurant.id, "Menu Principal", description="Notre sélection de plats"
            )
            for name, description, price, category in DISHES:
                await crud.create_dish(
                    session,
                    menu_id=menu.id,
                    name=name,
                    price=Decimal(price),
                    category=category,
                    description=description,
                )
            print(f"✅ Created menu with {len(DISHES)} dishes")

    await engine.dispose()

    print("\n🎉 Database seeded successfully!")
    print(f"   Password for every demo user: {DEMO_PASSWORD}")
    print("   Call the API with the header X-User-Id: <user id>")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo data")
    parser.add_argument("--reset", action="store_true", help="Drop all tables first")
    args = parser.parse_args()

    asyncio.run(seed(reset=args.reset))
