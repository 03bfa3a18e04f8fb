from django.core.management.base import BaseCommand

from suppliers.services import repair_balance, verify_balances


class Command(BaseCommand):
    """Compare stored supplier balances with the purchase order ledger."""

    help = "Report suppliers whose running balance differs from their outstanding purchase orders."

    def add_arguments(self, parser):
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Overwrite drifted balances with the recomputed value.",
        )

    def handle(self, *args, **options):
        drift = verify_balances()
        if not drift:
            self.stdout.write(self.style.SUCCESS("All supplier balances match."))
            return

        for row in drift:
            self.stdout.write(
                self.style.WARNING(
                    f"{row.name} (#{row.supplier_id}): stored {row.stored}, "
                    f"computed {row.computed}, difference {row.difference}"
                )
            )
            if options["fix"]:
                repair_balance(row.supplier_id)

        if options["fix"]:
            self.stdout.write(self.style.SUCCESS(f"Repaired {len(drift)} supplier balance(s)."))
        else:
            self.stdout.write(f"{len(drift)} supplier(s) out of balance. Run with --fix to repair.")
