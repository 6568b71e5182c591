import signal
import threading
import time

import pytest


@pytest.fixture
def signal_when_ready():
    """
    Deliver a signal to the main thread once the given files have content,
    i.e. once the children that write them are running.
    """
    cancelled = threading.Event()
    threads = []
    main = threading.main_thread().ident

    def start(paths, signum, timeout: float = 10.0):
        def wait_then_signal():
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline and not cancelled.is_set():
                if all(p.exists() and p.read_text().strip() for p in paths):
                    break
                time.sleep(0.05)
            # give the main thread time to block on the child
            if not cancelled.wait(0.2):
                signal.pthread_kill(main, signum)

        thread = threading.Thread(target=wait_then_signal, daemon=True)
        thread.start()
        threads.append(thread)

    yield start

    cancelled.set()
    for thread in threads:
        thread.join(timeout=5)
