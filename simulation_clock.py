# simulation_clock.py
# Drives the simulation: every tick advances all asset prices as one batch and
# then runs exactly one matching pass per registered account against that
# batch. Runs on its own daemon thread and stops cleanly.

import logging
import threading
import time
from enum import Enum


class ClockState(str, Enum):
    IDLE = "IDLE"
    TICKING = "TICKING"
    STOPPED = "STOPPED"


class SimulationClock:
    """
    Fixed-period ticker.

    A tick is: IDLE -> TICKING, MarketData.advance(), one run_matching() per
    session with the new batch (each waits for that account's mailbox), then
    back to IDLE. User requests arriving mid-tick queue behind the matching
    pass in the same mailbox.
    """

    def __init__(self, market, sessions=(), period_sec=1.5):
        self.market = market
        self.sessions = list(sessions)
        self.period_sec = period_sec
        self.state = ClockState.IDLE
        self.tick_count = 0
        self._stop_event = threading.Event()
        self._thread = None
        self._tick_lock = threading.Lock()
        self.log = logging.getLogger("exchange")

    @classmethod
    def from_config(cls, cfg, market, sessions=()):
        return cls(market, sessions, period_sec=cfg.tick_period_sec)

    def register(self, session) -> None:
        with self._tick_lock:
            self.sessions.append(session)

    def unregister(self, session) -> None:
        with self._tick_lock:
            if session in self.sessions:
                self.sessions.remove(session)

    def tick(self):
        """Run one tick synchronously. Returns {account label: fills}."""
        with self._tick_lock:
            self.state = ClockState.TICKING
            try:
                assets = self.market.advance()
                results = {}
                for session in self.sessions:
                    label = session.account_id or "guest"
                    try:
                        results[label] = session.run_matching(assets)
                    except Exception as e:
                        # one account's failure must not stop prices or the other accounts
                        self.log.exception(f"Matching pass failed for {label}: {e}")
                self.tick_count += 1
                return results
            finally:
                self.state = ClockState.IDLE

    def run(self, max_ticks=None) -> None:
        """Tick every period until stop() (or max_ticks), keeping a fixed cadence."""
        next_tick = time.perf_counter() + self.period_sec
        ticks = 0
        while not self._stop_event.wait(max(0.0, next_tick - time.perf_counter())):
            try:
                self.tick()
            except Exception as e:
                self.log.exception(f"Tick failed: {e}")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            next_tick += self.period_sec
            # fell behind (e.g. a slow pass): skip missed slots rather than burst
            now = time.perf_counter()
            if next_tick < now:
                next_tick = now + self.period_sec

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self.state = ClockState.IDLE
        self._thread = threading.Thread(target=self.run, name="simulation-clock", daemon=True)
        self._thread.start()
        self.log.info(f"Simulation clock started: period={self.period_sec:.3f}s, accounts={len(self.sessions)}")

    def stop(self, timeout=None) -> None:
        """Stop ticking. Waits for an in-flight tick; no tick fires afterwards."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.log.warning(f"Simulation clock still finishing a tick after {timeout}s; not stopped yet.")
                return
            self._thread = None
        with self._tick_lock:
            self.state = ClockState.STOPPED
        self.log.info(f"Simulation clock stopped after {self.tick_count} ticks.")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
