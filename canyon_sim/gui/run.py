"""Launch script for the Canyon Sim API server."""

import logging

import uvicorn


def main():
    """Start the API server."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    print("=" * 70)
    print("Canyon Sim API")
    print("=" * 70)
    print("\nStarting server...")
    print("Open http://localhost:8000/docs in your browser")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 70 + "\n")

    uvicorn.run(
        "canyon_sim.gui.app:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
