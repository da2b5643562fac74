# main.py
# Entry point for the paper-trading simulator.
# Sets up logging, authenticates, opens the account session, and runs the
# simulation clock (plus the optional TCP command surface) until interrupted.

import argparse              # Command-line overrides for the configuration table
import datetime              # To format timestamps with microsecond precision
import logging               # For logging system events to console and files
import os                    # For filesystem operations (e.g., creating logs directory)
import threading             # Command surface runs on its own thread
import time                  # For the foreground wait loop

import config
import notifications
from account import AccountSession
from auth import authenticate
from client_handler import ClientHandler
from market_data import MarketData
from persistence import SqliteLedgerStore
from simulation_clock import SimulationClock

logger = logging.getLogger("exchange")


# Custom log formatter including microsecond resolution
class MicrosecondFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        ct = datetime.datetime.fromtimestamp(record.created)
        if datefmt:
            return ct.strftime(datefmt)
        return ct.strftime("%Y-%m-%d %H:%M:%S.%f")


def setup_logging(log_dir="logs", level=logging.INFO):
    """
    Console + file logging with microsecond timestamps.
    Fills and price ticks also get their own files (trade.log, market.log).
    """
    os.makedirs(log_dir, exist_ok=True)
    formatter = MicrosecondFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.FileHandler(os.path.join(log_dir, "simulator.log"), mode="w")
    stream_handler = logging.StreamHandler()
    file_handler.setFormatter(formatter)
    stream_handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[file_handler, stream_handler], force=True)

    # Dedicated files for the high-volume streams
    for name, filename, lvl in (("trade", "trade.log", logging.INFO), ("market", "market.log", logging.DEBUG)):
        lg = logging.getLogger(name)
        lg.setLevel(lvl)
        handler = logging.FileHandler(os.path.join(log_dir, filename), mode="w")
        handler.setFormatter(formatter)
        lg.addHandler(handler)
    # price ticks stay out of the console
    logging.getLogger("market").propagate = False


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Simulated commodity paper-trading")
    p.add_argument("--tick-ms", type=int, default=config.TICK_PERIOD_MS)
    p.add_argument("--cash", type=float, default=config.STARTING_CASH)
    p.add_argument("--volatility", type=float, default=config.VOLATILITY)
    p.add_argument("--history", type=int, default=config.HISTORY_LENGTH)
    p.add_argument("--db", type=str, default=config.DB_PATH, help="SQLite path for ledger documents")
    p.add_argument("--token", type=str, default=None, help="Sign-in token (default: anonymous)")
    p.add_argument("--guest", action="store_true", help="Run without an account; nothing is saved")
    p.add_argument("--duration", type=float, default=None, help="Seconds to run (default: until Ctrl-C)")
    p.add_argument("--no-server", action="store_true", help="Do not open the TCP command port")
    p.add_argument("--port", type=int, default=config.TCP_PORT)
    return p.parse_args(argv)


def build_session(args):
    """Wire config -> market -> store/auth -> session -> clock."""
    cfg = config.SimulationConfig.from_module(
        starting_cash=args.cash,
        tick_period_ms=args.tick_ms,
        volatility=args.volatility,
        history_length=args.history,
        db_path=args.db,
        tcp_port=args.port,
    )
    market = MarketData.from_config(cfg)
    account_id = authenticate(token=args.token, enabled=False if args.guest else None)
    store = SqliteLedgerStore(cfg.db_path) if account_id is not None and cfg.db_path else None
    notifier = notifications.NotificationCenter(ttl_ms=cfg.notification_ttl_ms)
    session = AccountSession(cfg, market, account_id=account_id, store=store, notifier=notifier)
    clock = SimulationClock.from_config(cfg, market, [session])
    return cfg, market, session, clock


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging()
    logger.info("Starting paper-trading simulator...")

    cfg, market, session, clock = build_session(args)
    session.open()

    server = None
    if not args.no_server:
        server = ClientHandler(session, host=cfg.tcp_host, port=cfg.tcp_port, max_clients=config.NUM_CLIENTS)
        threading.Thread(target=server.start, daemon=True).start()

    clock.start()
    deadline = time.time() + args.duration if args.duration else None
    try:
        while deadline is None or time.time() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        clock.stop()
        if server is not None:
            server.stop()
        session.close()
        ledger = session.ledger
        logger.info(
            f"Simulation complete after {clock.tick_count} ticks. "
            f"Cash={ledger.cash_balance:.2f} NetWorth={ledger.net_worth(market.prices()):.2f} "
            f"OpenOrders={len(ledger.open_orders)} Transactions={len(ledger.transactions)}"
        )


if __name__ == "__main__":
    main()
