import argparse
import sys

from workshop_fulfillment.db import db, session_scope
from workshop_fulfillment.logging_setup import logger, get_logger, log_exception
from workshop_fulfillment.exceptions import FulfillmentError

def init_application(database_url=None):
    """Initialize application components."""
    db.initialize(database_url)
    db.check_connection()

    log = logger.app_logger
    log.info("Workshop Fulfillment System initialized")
    log.info(f"Using database: {db.engine.url.render_as_string(hide_password=True)}")

    return True

def init_database(args):
    """Create the schema, optionally dropping existing tables first."""
    log = get_logger('setup')

    if args.drop:
        log.warning("Dropping all tables")
        db.drop_all_tables()

    db.create_all_tables()
    log.info("Database schema created")
    return True

def sync_orders(args):
    from workshop_fulfillment.batch.sync_job import sync_supplier_orders

    results = sync_supplier_orders()
    print(f"Synced: {results['synced']}, failed: {results['failed']}")
    for error in results['errors']:
        print(f"  {error}")
    return results['failed'] == 0

def recompute(args):
    from workshop_fulfillment.batch.sync_job import recompute_all_parts_summaries

    results = recompute_all_parts_summaries(include_closed=args.include_closed)
    print(f"Processed: {results['processed']}, stale: {results['drifted']}")
    if args.verbose:
        for drift in results['drift']:
            print(f"  Work order {drift['work_order_id']}: {drift['cached']} -> {drift['recomputed']}")
    return True

def check_stock(args):
    from workshop_fulfillment.batch.sync_job import check_stock_invariants

    results = check_stock_invariants()
    if results['success']:
        print("Inventory ledger is consistent")
        return True

    print(f"{len(results['violations'])} SKUs violate reserved <= on hand:")
    for violation in results['violations']:
        print(f"  {violation['sku']}: on hand {violation['quantity_on_hand']}, "
              f"reserved {violation['quantity_reserved']}")
    return False

def back_order_stats(args):
    from workshop_fulfillment.services.back_order_service import BackOrderService

    with session_scope() as session:
        stats = BackOrderService(session).get_back_order_stats()

    for key, value in stats.items():
        print(f"{key:<20} {value}")
    return True

COMMANDS = {
    'init-db': init_database,
    'sync-orders': sync_orders,
    'recompute': recompute,
    'check-stock': check_stock,
    'back-order-stats': back_order_stats
}

def build_parser():
    parser = argparse.ArgumentParser(description='Workshop Fulfillment System')

    parser.add_argument('--database-url', type=str,
                        help='SQLAlchemy URL (overrides settings.ini)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create the database schema')
    init_parser.add_argument('--drop', action='store_true',
                             help='Drop existing tables before setup')

    subparsers.add_parser('sync-orders', help='Reconcile open back-orders with the supplier')

    recompute_parser = subparsers.add_parser('recompute', help='Rebuild cached parts summaries')
    recompute_parser.add_argument('--include-closed', action='store_true',
                                  help='Also process finished and cancelled work orders')
    recompute_parser.add_argument('--verbose', '-v', action='store_true',
                                  help='List every stale summary')

    subparsers.add_parser('check-stock', help='Check reserved <= on hand for every SKU')
    subparsers.add_parser('back-order-stats', help='Show open back-order counts')

    return parser

def main(argv=None):
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        init_application(args.database_url)
        ok = COMMANDS[args.command](args)
    except FulfillmentError as e:
        log_exception('app', e, f"{args.command} failed")
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1

    logger.app_logger.info(f"Command {args.command} finished")
    return 0 if ok else 1

if __name__ == "__main__":
    sys.exit(main())
