#!/usr/bin/env python3
"""Entry point for running the agent-viz Flask server.

Reads configuration from config.yaml and starts the server with the
configured host, port, and debug settings.
"""

import sys
from pathlib import Path

# Add src to path so we can import without installing
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from agent_viz.app import create_app
from agent_viz.config import load_config, get_value


def main():
    config_path = Path(__file__).parent / "config.yaml"
    config = load_config(config_path)

    host = get_value(config, "server", "host", default="127.0.0.1")
    port = get_value(config, "server", "port", default=1217)
    debug = get_value(config, "server", "debug", default=False)

    # threaded: approval long-polls block only their own request thread
    app = create_app(str(config_path))
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)


if __name__ == "__main__":
    main()
