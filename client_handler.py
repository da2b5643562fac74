# client_handler.py
# Line-based TCP command surface for one account session.
# Each client gets a dedicated thread; every command goes through the
# session's request path, so it is serialised with the matching pass.
import socket                  # TCP socket API
import threading               # For spawning per-client threads
import logging                 # Logging client actions and errors

HELP = (
    "Commands:\n"
    "  - Market order: BUY <asset> <qty> or SELL <asset> <qty>\n"
    "  - Limit order:  BUY <asset> <qty> <price> or SELL <asset> <qty> <price>\n"
    "  - Cancel order: CANCEL <order_id>\n"
    "  - PRICES, PORTFOLIO, ORDERS\n"
    "  - EXIT or QUIT to disconnect\n"
)


class ClientHandler:
    """
    Listens for TCP connections and spawns a thread per client.
    The text protocol lives in handle_command() so it can be driven without
    a socket.
    """
    def __init__(self, session, host="127.0.0.1", port=5000, max_clients=2):
        self.session = session
        self.host = host
        self.port = port
        self.max_clients = max_clients
        self.server = None
        self.log = logging.getLogger("exchange")

    def start(self):
        """Accept clients until max_clients have connected."""
        self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server.bind((self.host, self.port))
        self.server.listen(self.max_clients)
        self.log.info(f"Waiting for client connections on {self.host}:{self.port}...")
        client_count = 0
        while client_count < self.max_clients:
            try:
                conn, addr = self.server.accept()
            except OSError:
                # server socket closed by stop()
                break
            client_count += 1
            self.log.info(f"Client {client_count} connected from {addr}")
            threading.Thread(target=self._handle_client, args=(conn, client_count), daemon=True).start()

    def stop(self):
        if self.server is not None:
            self.server.close()
            self.server = None

    def _handle_client(self, conn, client_id):
        with conn:
            conn.sendall(f"Welcome Client{client_id}! Connected to the simulator.\n{HELP}".encode())
            file_obj = conn.makefile('r')
            try:
                for line in file_obj:
                    line = line.strip()
                    if not line:
                        continue
                    self.log.info(f"Client{client_id} sent: {line}")
                    reply, keep_open = self.handle_command(line)
                    conn.sendall(reply.encode())
                    if not keep_open:
                        self.log.info(f"Client{client_id} requested disconnect.")
                        return
            except OSError as e:
                self.log.error(f"Error in client {client_id} handler: {e}")

    def handle_command(self, line):
        """
        Parse and execute one command line.
        Returns (reply text, keep connection open).
        """
        parts = line.split()
        if not parts:
            return "", True
        cmd = parts[0].upper()

        if cmd in ("EXIT", "QUIT"):
            return "Goodbye!\n", False

        if cmd in ("BUY", "SELL", "B", "S") and len(parts) in (3, 4):
            asset_id = parts[1].upper()
            try:
                qty = int(parts[2])
                limit = float(parts[3]) if len(parts) == 4 else None
            except ValueError:
                return "ERROR: Invalid price or quantity format.\n", True
            if limit is None:
                result = self.session.place_market_order(asset_id, cmd, qty)
            else:
                result = self.session.place_limit_order(asset_id, cmd, qty, limit)
            if not result.accepted:
                return f"ERROR: {result.error}\n", True
            if result.transaction is not None:
                tx = result.transaction
                return f"FILLED: {tx.side.value} {tx.quantity} {tx.asset_id} @ {tx.price:.2f} (id {tx.id})\n", True
            order = result.order
            return (
                f"ACK: Limit {order.side.value} {order.quantity} {order.asset_id} "
                f"@ {order.target_price:.2f} resting as {order.id}\n"
            ), True

        if cmd == "CANCEL" and len(parts) == 2:
            result = self.session.cancel_order(parts[1])
            if result.accepted:
                return f"CANCEL ACK: Order {parts[1]} cancelled successfully.\n", True
            return f"ERROR: {result.error}\n", True

        if cmd == "PRICES" and len(parts) == 1:
            lines = [
                f"{a.id:<4} {a.name:<10} {a.current_price:>10.2f} {a.window_change_pct:+7.2f}%"
                for a in self.session.market.snapshot()
            ]
            return "\n".join(lines) + "\n", True

        if cmd == "PORTFOLIO" and len(parts) == 1:
            ledger = self.session.ledger
            prices = self.session.market.prices()
            lines = [f"Cash: {ledger.cash_balance:.2f}  Net worth: {ledger.net_worth(prices):.2f}"]
            for asset_id, h in sorted(ledger.holdings.items()):
                if h.quantity:
                    lines.append(f"{asset_id:<4} qty={h.quantity} avg={h.avg_cost:.2f}")
            return "\n".join(lines) + "\n", True

        if cmd == "ORDERS" and len(parts) == 1:
            orders = self.session.ledger.open_orders
            if not orders:
                return "No open orders.\n", True
            lines = [
                f"{o.id} {o.side.value} {o.quantity} {o.asset_id} @ {o.target_price:.2f}" for o in orders
            ]
            return "\n".join(lines) + "\n", True

        return f"ERROR: Invalid command.\n{HELP}", True
