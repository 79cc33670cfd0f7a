"""
Web Interface Entry Point
Run this script to serve the read-only status API next to the core
"""
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from config.loader import load_config, validate_config
from core.logging_setup import setup_logging
from core.service_factory import ServiceFactory
from web.app import create_app, get_local_ip

if __name__ == '__main__':
    config = load_config()
    validate_config(config)
    setup_logging(config["logging"])

    core, heartbeat = ServiceFactory(config).create_core()
    if core.fetch_loop is not None:
        core.fetch_loop.start()
    heartbeat.start()

    web_config = config.get("web", {})
    host = web_config.get("host", "127.0.0.1")
    port = web_config.get("port", 5000)
    app = create_app(core, core.fetch_loop)

    print("=" * 60)
    print("Crown Core - Status API")
    print("=" * 60)
    print(f"\n✓ Server is running on http://{host}:{port} (local IP {get_local_ip()})")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60)

    try:
        app.run(host=host, port=port, debug=False, use_reloader=False)
    except KeyboardInterrupt:
        print("\n\nServer stopped by user")
    finally:
        if core.fetch_loop is not None:
            core.fetch_loop.stop()
        heartbeat.stop()
