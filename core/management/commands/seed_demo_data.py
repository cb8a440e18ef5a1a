import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from common.utils import to_money
from inventory.models import Category, Product, Unit
from sales.models import Customer

CATALOG = {
    "Hand Tools": ["Screwdriver Set", "Hammer Claw", "Pliers Set", "Tape Measure 5m"],
    "Power Tools": ["Drill Machine", "Angle Grinder", "Circular Saw", "Heat Gun"],
    "Paint & Supplies": ["Paint Roller", "Paint Brush 2\"", "Masking Tape", "Primer White"],
    "Fasteners": ["Wood Screws 1\"", "Nails Assorted", "Wall Anchors", "Hinges Door"],
    "Electrical": ["Extension Cord 5m", "LED Bulb 9W", "Electrical Tape", "Switch Socket"],
    "Plumbing": ["PVC Pipe 1/2\"", "Elbow Joint", "Teflon Tape", "Faucet Kitchen"],
    "Building Materials": ["Cement Bag 50kg", "Sand Fine 25kg", "Tile Adhesive", "Grout White"],
    "Garden Tools": ["Garden Shovel", "Garden Hose 15m", "Pruning Shears", "Watering Can"],
    "Safety Equipment": ["Safety Goggles", "Work Gloves Leather", "Dust Mask", "Hard Hat"],
    "Hardware": ["Padlock 50mm", "Door Lock Set", "Rope Nylon 10m", "Tool Box Plastic"],
}

UNITS = ["pcs", "kg", "box", "pack", "l", "m", "g", "cm"]

CUSTOMERS = [
    ("Nimal Perera", "0771234567", "12 Temple Road, Welgama"),
    ("Kamala Silva", "0719876543", "4 Station Lane, Matara"),
]


class Command(BaseCommand):
    help = "Seed demo shop data (owner, cashier, catalogue, customers) for local development."

    def add_arguments(self, parser):
        parser.add_argument("--seed", type=int, default=42, help="Random seed for prices and stock levels.")

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()
        rng = random.Random(options["seed"])

        owner, owner_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "role": User.Role.OWNER,
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if owner_created:
            owner.set_password("admin123")
            owner.save(update_fields=["password"])

        cashier, cashier_created = User.objects.get_or_create(
            username="cashier",
            defaults={"role": User.Role.CASHIER, "is_active": True},
        )
        if cashier_created:
            cashier.set_password("cashier123")
            cashier.save(update_fields=["password"])

        for unit_name in UNITS:
            Unit.objects.get_or_create(name=unit_name)

        product_count = 0
        for category_name, product_names in CATALOG.items():
            category, _ = Category.objects.get_or_create(name=category_name)
            for product_name in product_names:
                cost_price = to_money(Decimal(str(rng.uniform(5, 55))))
                selling_price = to_money(cost_price * Decimal(str(rng.uniform(1.2, 1.7))))
                _, created = Product.objects.get_or_create(
                    name=product_name,
                    category=category,
                    defaults={
                        "unit": rng.choice(UNITS),
                        "cost_price": cost_price,
                        "selling_price": selling_price,
                        "quantity": rng.randint(10, 110),
                        "low_stock_threshold": rng.randint(5, 15),
                    },
                )
                product_count += int(created)

        for name, phone, address in CUSTOMERS:
            Customer.objects.get_or_create(name=name, defaults={"phone": phone, "address": address})

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write(f"Owner: {owner.username} / admin123")
        self.stdout.write(f"Cashier: {cashier.username} / cashier123")
        self.stdout.write(f"Categories: {len(CATALOG)}, new products: {product_count}")
