"""
Outil d'exploitation: lance les balayages de paiement hors API.

Usage:
    python -m marketplace.maintenance [--payments-only | --orders-only]

Passe par les mêmes fonctions de service que l'endpoint admin /api/admin/payments/sweep,
les invariants commande/paiement sont donc appliqués au même endroit.
"""
import argparse
import json
import logging
import os
import sys

from marketplace.infra.supabase_client import create_service_client
from marketplace.payments.flutterwave_client import create_gateway_client
from marketplace.reconciliation import sweeps

logger = logging.getLogger("marketplace.maintenance")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m marketplace.maintenance")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--payments-only", action="store_true", help="expire/rapproche seulement les paiements PENDING")
    group.add_argument("--orders-only", action="store_true", help="annule seulement les commandes abandonnées")
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "info").upper())
    db = create_service_client()
    report = {}
    if not args.orders_only:
        gateway = create_gateway_client()
        try:
            report["payments"] = sweeps.sweep_pending_payments(db, gateway)
        finally:
            gateway.close()
    if not args.payments_only:
        report["orders"] = sweeps.cancel_abandoned_orders(db)
    print(json.dumps(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
