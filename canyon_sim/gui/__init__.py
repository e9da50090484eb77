"""Canyon Sim HTTP API

A small FastAPI service in front of the battle engine: single battles,
blocking Monte Carlo runs, and background simulation jobs that can be
polled and cancelled.

Usage:
    python -m canyon_sim.gui.run

Then open http://localhost:8000/docs in your browser.
"""

__version__ = "0.1.0"
