#!/usr/bin/env python3
"""
Fit-out Workflow Engine: demo seed.

Walks one office fit-out through the whole workflow via the services, so every
screen has data: approved quotation, locked bid round, activated execution
plan with a funded cost center, and one delivered procurement line.

Usage:
    python scripts/seed_demo.py              # add to the configured DB
    python scripts/seed_demo.py --reset      # drop and recreate tables first
"""

import argparse

from fitout import create_app
from fitout.models import db
from fitout.models.roles import Actor, Role
from fitout.services import (
    bid_round_service,
    case_service,
    cost_center_service,
    execution_plan_service,
    procurement_service,
    quotation_audit_service,
)

SALES = Actor(id="demo-sales", role=Role.SALES, name="Demo Sales")
QUOTER = Actor(id="demo-quote", role=Role.QUOTATION_TEAM, name="Demo Quotation")
PROCUREMENT = Actor(id="demo-proc", role=Role.PROCUREMENT, name="Demo Procurement")
ADMIN = Actor(id="demo-admin", role=Role.SUPER_ADMIN, name="Demo Admin")
EXECUTION = Actor(id="demo-exec", role=Role.EXECUTION_TEAM, name="Demo Execution")
CLIENT = Actor(id="demo-client", role=Role.CLIENT, name="Northwind Offices")
ACCOUNTS = Actor(id="demo-acc", role=Role.ACCOUNTS, name="Demo Accounts")

QUOTATION_ITEMS = [
    {"item_id": "TILE-01", "name": "Vitrified tile 600x600", "unit": "box", "quantity": 120, "unit_price": 450},
    {"item_id": "PAINT-20", "name": "Emulsion 20L", "unit": "can", "quantity": 12, "unit_price": 3200,
     "discount_percent": 5},
    {"item_id": "GYP-BOARD", "name": "Gypsum board", "unit": "sheet", "quantity": 80, "unit_price": 640},
]

PLAN_DAYS = [
    {"date": "2026-11-02", "work_description": "Site protection and demolition",
     "labor_cost": 18000, "material_cost": 2500,
     "materials": [{"catalog_item_id": "GYP-BOARD", "item_name": "Gypsum board",
                    "quantity": 80, "required_on": "2026-11-01"}]},
    {"date": "2026-11-04", "work_description": "Flooring",
     "labor_cost": 22000, "material_cost": 54000,
     "materials": [{"catalog_item_id": "TILE-01", "item_name": "Vitrified tile 600x600",
                    "quantity": 120, "required_on": "2026-11-03"}]},
    {"date": "2026-11-06", "work_description": "Painting",
     "labor_cost": 9000, "material_cost": 38400,
     "materials": [{"catalog_item_id": "PAINT-20", "item_name": "Emulsion 20L",
                    "quantity": 12, "required_on": "2026-11-05"}]},
]


def seed():
    case = case_service.create_case(
        "Northwind HQ, 4th floor fit-out",
        SALES,
        client_name="Northwind Offices",
        client_id=CLIENT.id,
        site_address="Plot 7, Tech Park Road",
        estimated_budget=160000,
    )
    print(f"  case {case['code']}")

    quotation = quotation_audit_service.submit_quotation(case["id"], QUOTATION_ITEMS, QUOTER, title="Base scope")
    quotation = quotation_audit_service.approve_quotation(quotation["id"], PROCUREMENT)
    print(f"  quotation #{quotation['id']} approved, grand total {quotation['grand_total']}")

    round_ = bid_round_service.create_round(quotation["id"], ["V-BUILDWELL", "V-PRIMEFIT"], PROCUREMENT)
    bid_round_service.submit_bid(round_["id"], "V-BUILDWELL", 138000, 21, PROCUREMENT, vendor_name="Buildwell")
    bid_round_service.submit_bid(round_["id"], "V-PRIMEFIT", 131500, 25, PROCUREMENT, vendor_name="PrimeFit")
    bid_round_service.select_vendor(round_["id"], "V-PRIMEFIT", PROCUREMENT)
    bid_round_service.set_admin_approval(round_["id"], ADMIN)
    bid_round_service.lock_vendor(round_["id"], PROCUREMENT)
    print(f"  bid round #{round_['id']} locked on V-PRIMEFIT")

    case_service.convert_to_project(case["id"], SALES)
    execution_plan_service.submit_plan(case["id"], "days", PLAN_DAYS, EXECUTION, notes="Three-visit plan")
    execution_plan_service.approve_plan(case["id"], "preparer", EXECUTION)
    execution_plan_service.approve_plan(case["id"], "admin", ADMIN)
    plan = execution_plan_service.approve_plan(case["id"], "client", CLIENT)
    print(f"  execution plan locked, budget {plan['total_budget']}")

    cost_center_service.record_spend(case["id"], 12000, "salaries", ACCOUNTS, description="Week 1 crew")

    first = next(procurement_service.list_unscheduled(case["id"]))
    line = procurement_service.create_plan(
        case["id"],
        first["catalog_item_id"],
        first["quantity"],
        first["required_on"],
        "V-GYPSUPPLY",
        "2026-10-30",
        PROCUREMENT,
        vendor_name="Gyp Supply Co",
        item_name=first["item_name"],
        work_description=first["work_description"],
    )
    procurement_service.mark_delivered(line["id"], PROCUREMENT)
    print(f"  procurement line #{line['id']} delivered")


def main():
    parser = argparse.ArgumentParser(description="Seed fit-out workflow demo data")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
            print("Tables recreated.")
        print("Seeding demo case...")
        seed()
        print("Done.")


if __name__ == "__main__":
    main()
