from django.core.management.base import BaseCommand
from django.db import transaction

from sales.models import Customer
from sales.services import reconcile_customer_balance


class Command(BaseCommand):
    help = "Compare stored customer balances with the dues of their open sales."

    def add_arguments(self, parser):
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Overwrite drifted balances with the recomputed value.",
        )

    def handle(self, *args, **options):
        fix = options["fix"]
        drifted = 0
        fixed = 0

        for customer in Customer.objects.order_by("name", "id").iterator():
            with transaction.atomic():
                report = reconcile_customer_balance(customer, fix=fix)
            if report.drift == 0:
                continue

            drifted += 1
            fixed += int(report.fixed)
            self.stdout.write(
                f"- {customer.name} ({customer.id}): stored={report.stored_balance} "
                f"expected={report.expected_balance} drift={report.drift}"
            )

        if not drifted:
            self.stdout.write(self.style.SUCCESS("All customer balances are in sync."))
            return

        self.stdout.write(self.style.WARNING(f"Found {drifted} customer balance(s) out of sync."))
        if fix:
            self.stdout.write(self.style.SUCCESS(f"Corrected {fixed} balance(s)."))
        else:
            self.stdout.write(self.style.WARNING("Dry run only. Re-run with --fix to correct balances."))
