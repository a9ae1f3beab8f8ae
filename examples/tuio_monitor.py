"""
Listen for TUIO object messages and print the live object table.

Run this alongside the tracker to check what a TUIO client receives:

    python examples/tuio_monitor.py --port 3333
"""

import argparse
import logging
import os
import sys
from typing import Dict

from pythonosc import dispatcher, osc_server

# Add src directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from tuio import OBJECT_PROFILE
from utils import setup_logging

LOGGER = logging.getLogger(__name__)


class TuioMonitor:
    """Rebuilds the object table from /tuio/2Dobj messages."""

    def __init__(self, verbose=False):
        self.objects: Dict[int, dict] = {}
        self.pending: Dict[int, dict] = {}
        self.frames = 0
        self.source = None
        self.verbose = verbose

    def handle(self, address, *args):
        if not args:
            return
        command = args[0]

        if command == "source":
            self.source = args[1]
        elif command == "alive":
            alive = set(args[1:])
            for session_id in [s for s in self.objects if s not in alive]:
                obj = self.objects.pop(session_id)
                print(f"- remove  session {session_id} (symbol {obj['symbol_id']})")
        elif command == "set":
            session_id, symbol_id, x, y, angle = args[1:6]
            if session_id not in self.objects:
                print(f"+ add     session {session_id} (symbol {symbol_id})")
            self.objects[session_id] = {
                'symbol_id': symbol_id, 'x': x, 'y': y, 'angle': angle,
            }
        elif command == "fseq":
            self.frames += 1
            if self.verbose:
                self.print_table(args[1])

    def print_table(self, fseq):
        print(f"frame {fseq}: {len(self.objects)} objects")
        for session_id, obj in sorted(self.objects.items()):
            print(
                f"  s={session_id:<6} id={obj['symbol_id']:<5} "
                f"x={obj['x']:.3f} y={obj['y']:.3f} a={obj['angle']:.2f}"
            )


def main():
    parser = argparse.ArgumentParser(description="Print TUIO 2Dobj traffic")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3333)
    parser.add_argument("--verbose", "-V", action="store_true", help="Print every frame")
    args = parser.parse_args()

    setup_logging()
    monitor = TuioMonitor(verbose=args.verbose)

    osc_dispatcher = dispatcher.Dispatcher()
    osc_dispatcher.map(OBJECT_PROFILE, monitor.handle)

    server = osc_server.BlockingOSCUDPServer((args.host, args.port), osc_dispatcher)
    LOGGER.info("Listening for TUIO on %s:%d (Ctrl+C to stop)", args.host, args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        LOGGER.info("Received %d frames", monitor.frames)


if __name__ == "__main__":
    main()
